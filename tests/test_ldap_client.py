#!/usr/bin/env python3
"""
Unit tests for the LDAP client.

Tests connection and bind handling, TLS configuration and the paged search
with cursor release, against mocked ldap3 objects.
"""

import os
import sys
import ssl
import unittest
from unittest.mock import Mock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import ldap3
from ldap3 import MOCK_SYNC
from ldap3.core.exceptions import LDAPSocketOpenError, LDAPOperationResult

from ldap_reconcile.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError, PAGED_RESULTS_OID
from ldap_reconcile.models import DirectorySourceConfig


def paged_result(cookie, code=0):
    result = {'result': code, 'description': 'success' if code == 0 else 'busy', 'message': ''}
    if cookie is not None:
        result['controls'] = {PAGED_RESULTS_OID: {'criticality': False, 'value': {'size': 0, 'cookie': cookie}}}
    return result


def entries(*emails):
    return [{'type': 'searchResEntry', 'dn': f'cn={e}', 'attributes': {'mail': [e]}} for e in emails]


class ScriptedConnection:
    """Stands in for ldap3.Connection, replaying one (result, response) per search."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []
        self.result = {}
        self.response = []

    def search(self, **kwargs):
        self.calls.append(kwargs)
        if kwargs.get('paged_size') == 0:
            self.result, self.response = paged_result(None), []
            return True
        item = self.pages.pop(0)
        if isinstance(item, Exception):
            raise item
        self.result, self.response = item
        return bool(self.response)


class TestLDAPClientConnect(unittest.TestCase):
    """Test cases for LDAPClient.connect."""

    def setUp(self):
        self.source = DirectorySourceConfig(
            server='ldap.example.com',
            base_dn='ou=people,dc=example,dc=com',
            bind_user='cn=reader,dc=example,dc=com',
            bind_password='secret',
        )

    @patch('ldap_reconcile.ldap_client.Server')
    @patch('ldap_reconcile.ldap_client.Connection')
    def test_successful_bind(self, mock_connection, mock_server):
        """Test successful LDAP connection with credentials."""
        conn = Mock()
        conn.open.return_value = True
        conn.bind.return_value = True
        mock_connection.return_value = conn

        client = LDAPClient(self.source)

        self.assertTrue(client.connect())
        self.assertTrue(client._connected)
        mock_server.assert_called_once()
        self.assertEqual(mock_server.call_args.kwargs['port'], 389)
        self.assertEqual(mock_connection.call_args.kwargs['user'], 'cn=reader,dc=example,dc=com')
        self.assertEqual(mock_connection.call_args.kwargs['password'], 'secret')

    @patch('ldap_reconcile.ldap_client.Server')
    @patch('ldap_reconcile.ldap_client.Connection')
    def test_anonymous_bind(self, mock_connection, mock_server):
        """Test that a source without bind user binds anonymously."""
        conn = Mock()
        conn.open.return_value = True
        conn.bind.return_value = True
        mock_connection.return_value = conn
        source = DirectorySourceConfig(server='ldap.example.com', base_dn='dc=example,dc=com')

        LDAPClient(source).connect()

        self.assertNotIn('user', mock_connection.call_args.kwargs)
        conn.bind.assert_called_once()

    @patch('ldap_reconcile.ldap_client.Server')
    @patch('ldap_reconcile.ldap_client.Connection')
    def test_bind_rejected(self, mock_connection, mock_server):
        """Test that a rejected bind raises LDAPConnectionError without retrying."""
        conn = Mock()
        conn.open.return_value = True
        conn.bind.return_value = False
        conn.result = {'description': 'invalidCredentials'}
        mock_connection.return_value = conn

        client = LDAPClient(self.source)

        with self.assertRaises(LDAPConnectionError):
            client.connect()
        self.assertEqual(mock_connection.call_count, 1)
        self.assertFalse(client._connected)
        conn.unbind.assert_called_once()

    @patch('ldap_reconcile.ldap_client.Server')
    @patch('ldap_reconcile.ldap_client.Connection')
    def test_server_unreachable(self, mock_connection, mock_server):
        conn = Mock()
        conn.open.side_effect = LDAPSocketOpenError('unable to open socket')
        mock_connection.return_value = conn

        with self.assertRaises(LDAPConnectionError):
            LDAPClient(self.source).connect()

    def mock_sync_connection(self, *args, **kwargs):
        """Real ldap3 Connection on the in-memory strategy, holding the bind account."""
        connection = ldap3.Connection(*args, client_strategy=MOCK_SYNC, **kwargs)
        connection.strategy.add_entry('cn=reader,dc=example,dc=com',
                                      {'userPassword': 'secret', 'sn': 'reader'})
        return connection

    def test_bind_with_ldap3_connection(self):
        """Test connect() against a real ldap3 Connection object."""
        with patch('ldap_reconcile.ldap_client.Connection', side_effect=self.mock_sync_connection):
            client = LDAPClient(self.source)

            self.assertTrue(client.connect())
            self.assertTrue(client._connected)
            self.assertTrue(client.connection.bound)
            client.disconnect()

    def test_wrong_password_with_ldap3_connection(self):
        source = DirectorySourceConfig(
            server='ldap.example.com',
            base_dn='ou=people,dc=example,dc=com',
            bind_user='cn=reader,dc=example,dc=com',
            bind_password='wrong',
        )

        with patch('ldap_reconcile.ldap_client.Connection', side_effect=self.mock_sync_connection):
            client = LDAPClient(source)

            with self.assertRaises(LDAPConnectionError):
                client.connect()
        self.assertFalse(client._connected)

    def test_tls_config_none_without_ssl(self):
        self.assertIsNone(LDAPClient(self.source)._create_tls_config())

    def test_tls_config_with_ldaps(self):
        source = DirectorySourceConfig.from_dict({
            'server': 'ldaps://ldap.example.com', 'port': 636, 'base_dn': 'dc=example,dc=com',
            'verify_ssl': False,
        })

        tls = LDAPClient(source)._create_tls_config()

        self.assertTrue(source.use_ssl)
        self.assertIsNotNone(tls)
        self.assertEqual(tls.validate, ssl.CERT_NONE)


class TestPagedSearch(unittest.TestCase):
    """Test cases for LDAPClient.paged_search."""

    def setUp(self):
        self.source = DirectorySourceConfig(server='ldap.example.com', base_dn='dc=example,dc=com', page_size=2)
        self.client = LDAPClient(self.source)
        self.client._connected = True

    def test_walks_pages_until_empty_cookie(self):
        """Test that the cookie from each page is sent with the next request."""
        self.client.connection = ScriptedConnection([
            (paged_result(b'c1'), entries('a@x.com', 'b@x.com')),
            (paged_result(b'c2'), entries('c@x.com', 'd@x.com')),
            (paged_result(b''), entries('e@x.com')),
        ])

        pages = list(self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail']))

        self.assertEqual([len(p) for p in pages], [2, 2, 1])
        calls = self.client.connection.calls
        self.assertEqual([c['paged_cookie'] for c in calls], [None, b'c1', b'c2'])
        self.assertTrue(all(c['paged_size'] == 2 for c in calls))
        self.assertEqual(pages[0][0], {'dn': 'cn=a@x.com', 'attributes': {'mail': ['a@x.com']}})

    def test_missing_control_ends_search(self):
        self.client.connection = ScriptedConnection([(paged_result(None), entries('a@x.com'))])

        pages = list(self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail']))

        self.assertEqual(len(pages), 1)

    def test_referrals_are_skipped(self):
        response = entries('a@x.com') + [{'type': 'searchResRef', 'uri': ['ldap://other/']}]
        self.client.connection = ScriptedConnection([(paged_result(b''), response)])

        pages = list(self.client.paged_search('dc=example,dc=com', '(mail=*)'))

        self.assertEqual(len(pages[0]), 1)

    def test_error_code_releases_cursor(self):
        """Test that a failing page sends a zero-size request with the last cookie."""
        self.client.connection = ScriptedConnection([
            (paged_result(b'c1'), entries('a@x.com', 'b@x.com')),
            (paged_result(None, code=51), []),
        ])

        with self.assertRaises(LDAPQueryError):
            list(self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail']))

        release = self.client.connection.calls[-1]
        self.assertEqual(release['paged_size'], 0)
        self.assertEqual(release['paged_cookie'], b'c1')

    def test_exception_releases_cursor(self):
        self.client.connection = ScriptedConnection([
            (paged_result(b'c1'), entries('a@x.com', 'b@x.com')),
            LDAPOperationResult(result=1, description='operationsError'),
        ])

        with self.assertRaises(LDAPQueryError):
            list(self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail']))

        self.assertEqual(self.client.connection.calls[-1]['paged_size'], 0)

    def test_first_page_failure_has_nothing_to_release(self):
        self.client.connection = ScriptedConnection([(paged_result(None, code=32), [])])

        with self.assertRaises(LDAPQueryError):
            list(self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail']))

        self.assertEqual(len(self.client.connection.calls), 1)

    def test_closing_early_releases_cursor(self):
        """Test that abandoning the generator mid-crawl releases the cursor."""
        self.client.connection = ScriptedConnection([
            (paged_result(b'c1'), entries('a@x.com', 'b@x.com')),
            (paged_result(b''), entries('c@x.com')),
        ])

        pages = self.client.paged_search('dc=example,dc=com', '(mail=*)', ['mail'])
        next(pages)
        pages.close()

        self.assertEqual(self.client.connection.calls[-1]['paged_size'], 0)
        self.assertEqual(self.client.connection.calls[-1]['paged_cookie'], b'c1')

    def test_requires_connection(self):
        client = LDAPClient(self.source)

        with self.assertRaises(LDAPQueryError):
            next(client.paged_search('dc=example,dc=com', '(mail=*)'))


if __name__ == '__main__':
    unittest.main()
