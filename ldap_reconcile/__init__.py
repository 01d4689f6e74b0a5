"""
LDAP Reconcile - Create, repair and disable user accounts from LDAP/Active Directory.

This package crawls one or more directory sources page by page and reconciles
their account records into a target user store, disabling store accounts that no
longer appear in any source.
"""

__version__ = "1.0.0"
__author__ = "LDAP Sync Team"
