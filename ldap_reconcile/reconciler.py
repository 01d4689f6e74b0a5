"""
Directory to user store reconciliation.

This module drives the paged crawl of one directory source and decides, for
every entry, whether the target store already knows the account, holds it
under a different login, or must create it.
"""

import re
import logging
from typing import Any, Dict, List, Set

from ldap_reconcile.models import (
    DirectoryRecord,
    DirectorySourceConfig,
    RunOptions,
    RunSummary,
    TargetUserRecord,
)
from ldap_reconcile.normalizer import get_attribute_value, normalize
from ldap_reconcile.stores.base import UserStoreBase, UserStoreError

logger = logging.getLogger(__name__)

VALID_EMAIL = re.compile(r'^[\w.\-]+@[\w.\-]+$')


class DataIntegrityError(Exception):
    """Raised when a login or external id matches more than one store record."""
    pass


def is_valid_email(email: str) -> bool:
    return bool(VALID_EMAIL.match(email or ''))


class Reconciler:
    """
    Reconciles directory entries into the target user store.

    The set of lower-cased emails seen across every source is kept in
    ``processed`` for the disabling pass.
    """

    def __init__(self, store: UserStoreBase, options: RunOptions, summary: RunSummary):
        self.store = store
        self.options = options
        self.summary = summary
        self.processed: Set[str] = set()

    def reconcile_source(self, client, source: DirectorySourceConfig) -> int:
        """
        Drain one directory source.

        Args:
            client: Connected directory client exposing ``paged_search``
            source: Source settings (search base, filter, attribute mapping)

        Returns:
            Number of directory entries handled

        Raises:
            LDAPQueryError: If a page cannot be fetched
            DataIntegrityError: If the store holds duplicate records
        """
        mapping = source.attributes
        logger.info("Searching for users, using the following attributes:")
        logger.info(f"   UID...........: {mapping.uid}")
        logger.info(f"   NAME..........: {mapping.name}")
        logger.info(f"   EMAIL.........: {mapping.email}")
        logger.info(f"Using the filter.: {source.search_filter}")
        logger.info(f"Using the basedn.: {source.base_dn}")

        attributes = None if self.options.all_attributes else mapping.as_list()
        pages = client.paged_search(source.base_dn, source.search_filter, attributes, source.page_size)

        count = 0
        try:
            for entries in pages:
                for entry in entries:
                    self._track(get_attribute_value(entry, mapping.email))
                    if self.options.dump_only:
                        self.dump_entry(entry, mapping.uid)
                    else:
                        self.reconcile_record(normalize(entry, mapping))
                    count += 1
        finally:
            # Releases the server-side cursor if we stopped early.
            close = getattr(pages, 'close', None)
            if close:
                close()

        logger.info(f"Source {source.name}: {count} entries processed")
        return count

    def _track(self, email):
        lowered = (email or '').lower()
        self.summary.processed.append(lowered)
        if lowered:
            self.processed.add(lowered)

    def dump_entry(self, entry: Dict[str, Any], uid_attribute: str):
        """Log the raw entry instead of reconciling it."""
        uid = get_attribute_value(entry, uid_attribute) or ''
        logger.info(f"*********************{uid}******************************")
        logger.info(f"dn: {entry.get('dn', '')}")
        for name, value in sorted((entry.get('attributes') or {}).items()):
            values = value if isinstance(value, (list, tuple)) else [value]
            for item in values:
                logger.info(f"{name}: {item}")
        logger.info("***************************************************************")

    def reconcile_record(self, record: DirectoryRecord) -> str:
        """
        Apply the create / skip / conflict decision to one record.

        Returns:
            One of ``skipped``, ``conflict``, ``invalid``, ``added``, ``failed``
        """
        logger.debug(f"Looking for: '{record.email}' ({record.external_id}) ({int(record.account_disabled)})")

        matches = self._unique(self.store.find_by_email(record.email), 'login', record.email)
        if matches:
            if self.options.report_all:
                logger.info(f"Already defined: {record.email} ({record.external_id} / {record.display_name})")
            self.summary.skipped.append(record.email)
            return 'skipped'

        if record.external_id:
            matches = self._unique(self.store.find_by_external_id(record.external_id),
                                   'external id', record.external_id)
            if matches:
                return self._repair_conflict(record, matches[0])

        return self._create(record)

    def _unique(self, matches: List[TargetUserRecord], key: str, value: str) -> List[TargetUserRecord]:
        if len(matches) > 1:
            logins = ', '.join(m.login_email for m in matches)
            raise DataIntegrityError(f"Error, more than 1 user match {key} '{value}': {logins}")
        return matches

    def _repair_conflict(self, record: DirectoryRecord, existing: TargetUserRecord) -> str:
        logger.error("External user already defined with different ID.")
        logger.error(f"   In LDAP: id={record.external_id}, mail={record.email}, name={record.display_name}")
        logger.error(f"   In store: id={existing.external_id}, mail={existing.login_email}, "
                     f"name={existing.display_name}")
        self.summary.conflicts.append(record.email)

        if self.options.no_apply or self.options.no_update:
            return 'conflict'

        logger.info(f"Updating user '{record.display_name}'")
        existing.login_email = record.email
        existing.display_name = record.display_name
        try:
            self.store.update(existing)
        except UserStoreError as e:
            logger.error(f"Failed to update user '{record.external_id}/{record.email}': {e}")
            self.summary.failed.append(record.email)
        return 'conflict'

    def _create(self, record: DirectoryRecord) -> str:
        logger.warning(f"Creating new user: {record.email} ({record.external_id} / {record.display_name})")
        if record.account_disabled:
            logger.warning(f"User {record.email}, is disabled")

        if not is_valid_email(record.email) or not record.external_id:
            logger.error(f"Invalid user name/mail: '{record.email}' ({record.dn})")
            self.summary.invalid.append(record.email)
            return 'invalid'

        if not self.options.no_apply:
            try:
                self.store.create(record.email, record.display_name, record.external_id)
            except UserStoreError as e:
                logger.error(f"failed to create user: '{record.external_id}/{record.email}': {e}")
                self.summary.failed.append(record.email)
                return 'failed'

        self.summary.added.append(record.email)
        return 'added'
