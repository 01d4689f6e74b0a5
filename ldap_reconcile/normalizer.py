"""
Projection of raw directory entries onto DirectoryRecord.
"""

import logging
from typing import Any, Mapping, Optional

from ldap_reconcile.models import AttributeMapping, DirectoryRecord

logger = logging.getLogger(__name__)

# userAccountControl ACCOUNTDISABLE bit
ACCOUNT_DISABLED_MASK = 2


def get_attribute_value(entry: Mapping[str, Any], attribute_name: str) -> Optional[str]:
    """
    Return the first value of an attribute, or None when absent.

    Attribute names are matched case-insensitively, as LDAP does.
    """
    attributes = entry.get('attributes') or {}
    value = attributes.get(attribute_name)
    if value is None:
        wanted = attribute_name.lower()
        for key, candidate in attributes.items():
            if key.lower() == wanted:
                value = candidate
                break

    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')
    return str(value)


def parse_account_control(value: Optional[str]) -> bool:
    """True when the account-disabled bit is set; absent or garbage means enabled."""
    try:
        flags = int(value)
    except (TypeError, ValueError):
        flags = 0
    return (flags & ACCOUNT_DISABLED_MASK) != 0


def normalize(entry: Mapping[str, Any], mapping: AttributeMapping) -> DirectoryRecord:
    """
    Build a DirectoryRecord from a raw entry.

    Never fails: missing attributes become empty strings and are rejected later
    by the reconciler's validity check.
    """
    return DirectoryRecord(
        external_id=get_attribute_value(entry, mapping.uid) or '',
        email=get_attribute_value(entry, mapping.email) or '',
        display_name=get_attribute_value(entry, mapping.name) or '',
        account_disabled=parse_account_control(get_attribute_value(entry, mapping.disabled_flag)),
        dn=str(entry.get('dn', '')),
    )
