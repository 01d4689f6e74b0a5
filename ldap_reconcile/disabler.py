"""
Disabling pass over the target user store.

Runs once every directory source has been drained and disables the accounts
that no source reported, unless they are allow-listed, already disabled, or
still own components.
"""

import time
import logging
from typing import Iterable, List, Optional

from ldap_reconcile.models import RunOptions, RunSummary, TargetUserRecord
from ldap_reconcile.stores.base import UserStoreBase, UserStoreError

logger = logging.getLogger(__name__)

DISABLED_REASON = "Disabled as not found in reference AD."


def matches_local_user(email: str, local_users: Iterable[str]) -> bool:
    """
    Check an email against the local-only allow-list.

    Entries match exactly, or as a prefix when they end with ``*``.
    Comparison ignores case.
    """
    email = email.lower()
    for pattern in local_users:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if pattern.endswith('*'):
            if email.startswith(pattern[:-1]):
                return True
        elif email == pattern:
            return True
    return False


class Disabler:
    """Disables store accounts absent from every directory source."""

    def __init__(self, store: UserStoreBase, options: RunOptions, summary: RunSummary,
                 timestamp: Optional[str] = None):
        self.store = store
        self.options = options
        self.summary = summary
        self.timestamp = timestamp or time.strftime('%c', time.localtime())

    @property
    def disabled_reason(self) -> str:
        return f"{DISABLED_REASON} {self.timestamp}"

    def run(self, processed: Iterable[str]) -> List[str]:
        """
        Walk every store account and disable the unprocessed ones.

        Args:
            processed: Lower-cased emails seen in the directory sources

        Returns:
            Emails disabled (or that would be, in no-apply mode) by this pass
        """
        logger.info("Checking user store (find disabled users)")
        processed = set(processed)
        disabled = []

        for record in self.store.enumerate_all():
            username = record.login_email.lower()
            if username in processed:
                continue

            if matches_local_user(username, self.options.local_users):
                logger.info(f"Skipping local-only user: '{username}'.")
            elif record.is_disabled:
                logger.debug(f"User '{username}', already disabled")
            elif self._owns_components(record, username):
                self.summary.ownership_blocked.append(username)
            elif self._disable(record, username):
                disabled.append(username)

        return disabled

    def _owns_components(self, record: TargetUserRecord, username: str) -> bool:
        responsibilities = self.store.responsibilities(record)
        for responsibility in responsibilities:
            logger.error(f"User '{username}' is responsible for: {responsibility}")
        return bool(responsibilities)

    def _disable(self, record: TargetUserRecord, username: str) -> bool:
        logger.warning(f"Disabling user: '{username}'")
        if not self.options.no_apply:
            record.disabled_reason = self.disabled_reason
            try:
                self.store.update(record)
            except UserStoreError as e:
                logger.error(f"Failed to disable user '{username}': {e}")
                self.summary.failed.append(username)
                return False
        self.summary.disabled.append(username)
        return True


def re_enable_all(store: UserStoreBase, options: RunOptions) -> List[str]:
    """
    Clear the disabled reason of every disabled account.

    Returns:
        Emails of the accounts re-enabled (or that would be, in no-apply mode)
    """
    enabled = []
    for record in store.enumerate_all():
        if not record.is_disabled:
            continue
        logger.info(f"Re-enable user: '{record.login_email}' ({record.display_name})")
        if not options.no_apply:
            record.disabled_reason = None
            try:
                store.update(record)
            except UserStoreError as e:
                logger.error(f"Failed to re-enable user '{record.login_email}': {e}")
                continue
        enabled.append(record.login_email)

    logger.info(f"Re-enabled {len(enabled)} users")
    return enabled
