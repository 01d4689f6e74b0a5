"""
Data model for LDAP Reconcile.

Fixed-shape records passed between the directory client, the reconciler, the
disabler and the user store adapters.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple


DEFAULT_SEARCH_FILTER = '(&(objectClass=top)(objectClass=person))'
DEFAULT_PAGE_SIZE = 500


@dataclass(frozen=True)
class AttributeMapping:
    """Names of the directory attributes carrying each semantic field."""

    uid: str = 'uid'
    name: str = 'sn'
    email: str = 'email'
    disabled_flag: str = 'userAccountControl'

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AttributeMapping':
        data = data or {}
        defaults = cls()
        return cls(
            uid=data.get('uid') or defaults.uid,
            name=data.get('name') or defaults.name,
            email=data.get('email') or defaults.email,
            disabled_flag=data.get('disabled_flag') or defaults.disabled_flag,
        )

    def as_list(self) -> List[str]:
        return [self.uid, self.name, self.email, self.disabled_flag]


@dataclass(frozen=True)
class DirectorySourceConfig:
    """
    Settings for one directory endpoint.

    One instance is consumed per reconciliation pass over that source.
    """

    server: str
    base_dn: str
    name: str = ''
    port: int = 389
    bind_user: Optional[str] = None
    bind_password: Optional[str] = None
    search_filter: str = DEFAULT_SEARCH_FILTER
    attributes: AttributeMapping = field(default_factory=AttributeMapping)
    page_size: int = DEFAULT_PAGE_SIZE
    use_ssl: bool = False
    start_tls: bool = False
    verify_ssl: bool = True
    ca_cert_file: Optional[str] = None
    connection_timeout: int = 10

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DirectorySourceConfig':
        """
        Build a source configuration from a parsed YAML mapping.

        Args:
            data: Mapping with at least ``server`` and ``base_dn``

        Returns:
            Immutable source configuration
        """
        server = data['server']
        port = int(data.get('port', 389))
        return cls(
            server=server,
            base_dn=data['base_dn'],
            name=data.get('name') or f"{server}:{port}",
            port=port,
            bind_user=data.get('bind_user') or None,
            bind_password=data.get('bind_password'),
            search_filter=data.get('search_filter') or DEFAULT_SEARCH_FILTER,
            attributes=AttributeMapping.from_dict(data.get('attributes')),
            page_size=int(data.get('page_size', DEFAULT_PAGE_SIZE)),
            use_ssl=bool(data.get('use_ssl', str(server).lower().startswith('ldaps://'))),
            start_tls=bool(data.get('start_tls', False)),
            verify_ssl=bool(data.get('verify_ssl', True)),
            ca_cert_file=data.get('ca_cert_file'),
            connection_timeout=int(data.get('connection_timeout', 10)),
        )


@dataclass(frozen=True)
class DirectoryRecord:
    """Normalized projection of one raw directory entry."""

    external_id: str
    email: str
    display_name: str
    account_disabled: bool = False
    dn: str = ''


@dataclass
class TargetUserRecord:
    """User account held by the target store."""

    user_id: Any
    login_email: str
    display_name: str = ''
    external_id: Optional[str] = None
    disabled_reason: Optional[str] = None

    @property
    def is_disabled(self) -> bool:
        return bool(self.disabled_reason)


@dataclass(frozen=True)
class Responsibility:
    """A component for which a user is the default assignee or QA contact."""

    classification: str
    product: str
    component: str

    def __str__(self) -> str:
        return f"{self.classification}/{self.product}/{self.component}"


@dataclass(frozen=True)
class RunOptions:
    """Mode switches for one reconciliation run."""

    dump_only: bool = False
    all_attributes: bool = False
    report_all: bool = False
    no_apply: bool = False
    no_update: bool = False
    local_users: Tuple[str, ...] = ()


@dataclass
class RunSummary:
    """Outcome of a reconciliation run, enumerated by email."""

    processed: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    ownership_blocked: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    runtime_seconds: float = 0

    def finish(self):
        self.end_time = datetime.now()
        if self.start_time:
            self.runtime_seconds = (self.end_time - self.start_time).total_seconds()

    def as_dict(self) -> Dict[str, Any]:
        return {
            'processed': len(self.processed),
            'added': list(self.added),
            'skipped': len(self.skipped),
            'invalid': list(self.invalid),
            'conflicts': list(self.conflicts),
            'failed': list(self.failed),
            'disabled': list(self.disabled),
            'ownership_blocked': list(self.ownership_blocked),
            'failed_sources': list(self.failed_sources),
            'runtime_seconds': self.runtime_seconds,
        }
