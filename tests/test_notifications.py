#!/usr/bin/env python3
"""
Unit tests for email notifications.
"""

import os
import sys
import smtplib
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_reconcile.notifications import (
    format_summary,
    send_email,
    send_failure_notification,
    send_run_summary,
)


class TestSendEmail(unittest.TestCase):
    """Test cases for send_email."""

    def setUp(self):
        self.config = {
            'enable_email': True,
            'smtp_server': 'smtp.example.com',
            'smtp_port': 587,
            'smtp_username': 'reconcile@example.com',
            'smtp_password': 'secret',
            'email_to': ['ops@example.com', 'it@example.com'],
        }

    def test_disabled_by_default(self):
        with patch('smtplib.SMTP') as mock_smtp:
            self.assertFalse(send_email('subject', 'body', {}))
        mock_smtp.assert_not_called()

    @patch('smtplib.SMTP')
    def test_send_with_starttls(self, mock_smtp):
        server = mock_smtp.return_value

        self.assertTrue(send_email('subject', 'body', self.config))

        mock_smtp.assert_called_once_with('smtp.example.com', 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('reconcile@example.com', 'secret')
        from_addr, to_addrs = server.sendmail.call_args[0][:2]
        self.assertEqual(from_addr, 'reconcile@example.com')
        self.assertEqual(to_addrs, ['ops@example.com', 'it@example.com'])
        server.quit.assert_called_once()

    @patch('smtplib.SMTP_SSL')
    def test_ssl_port(self, mock_smtp_ssl):
        config = dict(self.config, smtp_port=465, email_to='ops@example.com')

        self.assertTrue(send_email('subject', 'body', config))

        mock_smtp_ssl.assert_called_once_with('smtp.example.com', 465)
        self.assertEqual(mock_smtp_ssl.return_value.sendmail.call_args[0][1], ['ops@example.com'])

    def test_missing_server_or_recipients(self):
        self.assertFalse(send_email('subject', 'body', dict(self.config, smtp_server=None)))
        self.assertFalse(send_email('subject', 'body', dict(self.config, email_to=[])))

    @patch('smtplib.SMTP')
    def test_smtp_failure_is_reported(self, mock_smtp):
        mock_smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b'denied')

        self.assertFalse(send_email('subject', 'body', self.config))

    @patch('smtplib.SMTP', side_effect=ConnectionRefusedError('refused'))
    def test_connection_refused(self, mock_smtp):
        self.assertFalse(send_email('subject', 'body', self.config))


class TestRunNotifications(unittest.TestCase):
    """Test cases for the failure and summary notifications."""

    def setUp(self):
        self.summary = {
            'processed': 120,
            'added': ['new@example.com'],
            'skipped': 117,
            'invalid': ['bad address@example.com'],
            'conflicts': ['renamed@example.com'],
            'failed': [],
            'disabled': ['gone@example.com'],
            'ownership_blocked': ['owner@example.com'],
            'failed_sources': [],
            'runtime_seconds': 75.5,
        }

    def test_format_summary(self):
        text = format_summary(self.summary)

        self.assertIn('Total runtime: 1m 15.5s', text)
        self.assertIn('Processed: 120', text)
        self.assertIn('Added (1):\n  new@example.com', text)
        self.assertIn('Disabled (1):\n  gone@example.com', text)
        self.assertIn('still owning components (1):\n  owner@example.com', text)
        self.assertNotIn('Failed directory sources', text)

    def test_format_summary_truncates_long_lists(self):
        summary = dict(self.summary, added=[f'user{i}@example.com' for i in range(60)])

        self.assertIn('... and 10 more', format_summary(summary))

    @patch('ldap_reconcile.notifications.send_email')
    def test_summary_only_when_enabled(self, mock_send):
        self.assertFalse(send_run_summary(self.summary, {'email_on_success': False}))
        mock_send.assert_not_called()

        mock_send.return_value = True
        self.assertTrue(send_run_summary(self.summary, {'email_on_success': True}))
        subject, body = mock_send.call_args[0][:2]
        self.assertEqual(subject, 'LDAP Reconcile: Run Summary')
        self.assertIn('gone@example.com', body)

    @patch('ldap_reconcile.notifications.send_email', return_value=True)
    def test_failure_notification(self, mock_send):
        self.assertTrue(send_failure_notification('LDAP Connection Failed', 'bind rejected', {},
                                                  {'source': 'corp'}))

        subject, body = mock_send.call_args[0][:2]
        self.assertEqual(subject, 'LDAP Reconcile Alert: LDAP Connection Failed')
        self.assertIn('Error Message: bind rejected', body)
        self.assertIn('source: corp', body)

    @patch('ldap_reconcile.notifications.send_email')
    def test_failure_notification_opt_out(self, mock_send):
        self.assertFalse(send_failure_notification('title', 'message', {'email_on_failure': False}))
        mock_send.assert_not_called()


if __name__ == '__main__':
    unittest.main()
