"""
REST user store integration module.

This module implements the UserStoreBase interface for a Bugzilla-style
profile administration API. It provides lookups, account creation and updates,
paged enumeration and component ownership queries.
"""

import logging
from typing import Dict, List, Any
from .base import HTTPUserStoreBase, UserStoreError, UserStoreAuthenticationError
from ldap_reconcile.models import TargetUserRecord, Responsibility

logger = logging.getLogger(__name__)

# Placeholder password hash; the account can only authenticate externally.
EXTERNAL_AUTH_PASSWORD = '*'


class RESTUserStore(HTTPUserStoreBase):
    """
    REST user store client.

    User documents carry ``id``, ``login_name``, ``realname``, ``extern_id``
    and ``disabledtext``.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize REST store client.

        Args:
            config: Store configuration dictionary
        """
        super().__init__(config)
        self.users_path = config.get('users_path', '/users')
        self.page_size = int(config.get('page_size', 200))

        logger.info(f"Initialized REST user store client for {self.name}")

    def authenticate(self) -> bool:
        """Check the credentials with a one-record listing."""
        try:
            self.request('GET', self.users_path, params={'offset': 0, 'limit': 1})
            return True
        except UserStoreAuthenticationError:
            logger.error(f"Authentication rejected by {self.name}")
            return False

    def find_by_email(self, email: str) -> List[TargetUserRecord]:
        response = self.request('GET', self.users_path, params={'login_name': email})
        # Server-side matching may ignore case; keep the exact comparison here.
        return [user for user in self._parse_users(response) if user.login_email == email]

    def find_by_external_id(self, external_id: str) -> List[TargetUserRecord]:
        response = self.request('GET', self.users_path, params={'extern_id': external_id})
        return [user for user in self._parse_users(response) if user.external_id == external_id]

    def create(self, login_email: str, display_name: str, external_id: str) -> TargetUserRecord:
        """
        Create a new account that can only log in through external authentication.

        Returns:
            The created record

        Raises:
            UserStoreError: If the API rejects the account
        """
        body = {
            'login_name': login_email,
            'realname': display_name,
            'extern_id': external_id,
            'cryptpassword': EXTERNAL_AUTH_PASSWORD,
        }
        response = self.request('POST', self.users_path, body=body)

        user_id = response.get('id')
        if user_id is None:
            raise UserStoreError(f"Failed to create user '{external_id}/{login_email}': no id returned")

        logger.debug(f"Created user '{login_email}' with ID {user_id} in {self.name}")
        return TargetUserRecord(
            user_id=user_id,
            login_email=login_email,
            display_name=display_name,
            external_id=external_id,
        )

    def update(self, record: TargetUserRecord) -> None:
        body = {
            'login_name': record.login_email,
            'realname': record.display_name,
            'disabledtext': record.disabled_reason or '',
        }
        self.request('PUT', f"{self.users_path}/{record.user_id}", body=body)
        logger.debug(f"Updated user {record.user_id} ({record.login_email}) in {self.name}")

    def enumerate_all(self) -> List[TargetUserRecord]:
        """
        Fetch every account, one page of ``page_size`` users per request.

        Returns:
            All records in store order
        """
        users = []
        offset = 0
        while True:
            response = self.request('GET', self.users_path,
                                    params={'offset': offset, 'limit': self.page_size})
            page = self._parse_users(response)
            users.extend(page)
            if len(page) < self.page_size:
                break
            offset += len(page)

        logger.info(f"Retrieved {len(users)} users from {self.name}")
        return users

    def responsibilities(self, record: TargetUserRecord) -> List[Responsibility]:
        response = self.request('GET', f"{self.users_path}/{record.user_id}/responsibilities")
        return [
            Responsibility(
                classification=item.get('classification', ''),
                product=item.get('product', ''),
                component=item.get('component', ''),
            )
            for item in response.get('components', [])
        ]

    def _parse_users(self, response: Dict[str, Any]) -> List[TargetUserRecord]:
        users = []
        for user in response.get('users', []):
            users.append(TargetUserRecord(
                user_id=user.get('id'),
                login_email=user.get('login_name') or '',
                display_name=user.get('realname') or '',
                external_id=user.get('extern_id') or None,
                disabled_reason=user.get('disabledtext') or None,
            ))
        return users

