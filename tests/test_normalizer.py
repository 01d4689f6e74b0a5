#!/usr/bin/env python3
"""
Unit tests for the record normalizer.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_reconcile.models import AttributeMapping
from ldap_reconcile.normalizer import get_attribute_value, normalize, parse_account_control


AD_MAPPING = AttributeMapping(uid='sAMAccountName', name='displayName', email='mail',
                              disabled_flag='userAccountControl')


class TestGetAttributeValue(unittest.TestCase):
    """Test cases for attribute access on raw entries."""

    def test_first_value_of_multi_valued(self):
        entry = {'attributes': {'mail': ['first@example.com', 'second@example.com']}}
        self.assertEqual(get_attribute_value(entry, 'mail'), 'first@example.com')

    def test_case_insensitive_name(self):
        entry = {'attributes': {'sAMAccountName': 'jdoe'}}
        self.assertEqual(get_attribute_value(entry, 'samaccountname'), 'jdoe')

    def test_missing_and_empty(self):
        entry = {'attributes': {'mail': []}}
        self.assertIsNone(get_attribute_value(entry, 'mail'))
        self.assertIsNone(get_attribute_value(entry, 'uid'))
        self.assertIsNone(get_attribute_value({}, 'uid'))

    def test_bytes_and_integers(self):
        entry = {'attributes': {'uid': [b'jdoe'], 'userAccountControl': 514}}
        self.assertEqual(get_attribute_value(entry, 'uid'), 'jdoe')
        self.assertEqual(get_attribute_value(entry, 'userAccountControl'), '514')


class TestParseAccountControl(unittest.TestCase):
    """Test cases for the account-disabled bit."""

    def test_disabled_bit(self):
        self.assertTrue(parse_account_control('514'))
        self.assertTrue(parse_account_control('2'))

    def test_enabled(self):
        self.assertFalse(parse_account_control('512'))
        self.assertFalse(parse_account_control('0'))

    def test_absent_or_garbage_is_enabled(self):
        self.assertFalse(parse_account_control(None))
        self.assertFalse(parse_account_control(''))
        self.assertFalse(parse_account_control('yes'))


class TestNormalize(unittest.TestCase):
    """Test cases for normalize."""

    def test_full_entry(self):
        entry = {
            'dn': 'CN=Jane Doe,OU=Users,DC=example,DC=com',
            'attributes': {
                'sAMAccountName': ['jdoe'],
                'displayName': ['Jane Doe'],
                'mail': ['Jane.Doe@example.com'],
                'userAccountControl': ['66050'],
            },
        }

        record = normalize(entry, AD_MAPPING)

        self.assertEqual(record.external_id, 'jdoe')
        self.assertEqual(record.display_name, 'Jane Doe')
        self.assertEqual(record.email, 'Jane.Doe@example.com')
        self.assertTrue(record.account_disabled)
        self.assertEqual(record.dn, 'CN=Jane Doe,OU=Users,DC=example,DC=com')

    def test_missing_attributes_become_empty(self):
        """Test that normalize never fails on sparse entries."""
        record = normalize({'dn': 'CN=x', 'attributes': {}}, AD_MAPPING)

        self.assertEqual(record.external_id, '')
        self.assertEqual(record.email, '')
        self.assertEqual(record.display_name, '')
        self.assertFalse(record.account_disabled)

    def test_default_mapping(self):
        entry = {'attributes': {'uid': 'u1', 'sn': 'Doe', 'email': 'u1@example.com'}}

        record = normalize(entry, AttributeMapping())

        self.assertEqual((record.external_id, record.display_name, record.email),
                         ('u1', 'Doe', 'u1@example.com'))


if __name__ == '__main__':
    unittest.main()
