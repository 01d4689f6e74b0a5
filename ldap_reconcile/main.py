"""
Main orchestrator for LDAP Reconcile.

This module wires configuration, logging, the directory clients, the target
user store, the reconciler and the disabler into one reconciliation run.
"""

import sys
import inspect
import logging
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional

from ldap_reconcile.config import (
    ConfigurationError,
    build_run_options,
    build_sources,
    load_config,
)
from ldap_reconcile.disabler import Disabler, re_enable_all
from ldap_reconcile.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from ldap_reconcile.logging_setup import setup_logging
from ldap_reconcile.models import DirectorySourceConfig, RunOptions, RunSummary
from ldap_reconcile.notifications import send_failure_notification, send_run_summary
from ldap_reconcile.reconciler import DataIntegrityError, Reconciler
from ldap_reconcile.stores.base import UserStoreBase, UserStoreError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SOURCE_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_LDAP_CONNECTION = 3
EXIT_UNEXPECTED = 4
EXIT_DATA_INTEGRITY = 5
EXIT_STORE_ERROR = 6


class ReconcileError(Exception):
    """Base exception for orchestration errors."""
    pass


class ReconcileOrchestrator:
    """
    Runs one reconciliation: every directory source in turn, then the
    disabling pass if all of them were drained successfully.
    """

    def __init__(self, config_path: Optional[str] = None,
                 ldap_config_files: Optional[List[str]] = None,
                 cli_options: Optional[Dict[str, Any]] = None,
                 verbosity: int = 0):
        """
        Initialize the orchestrator.

        Args:
            config_path: Path to configuration file
            ldap_config_files: Extra directory source files (one source each)
            cli_options: Mode switches from the command line
            verbosity: Count of -v minus count of -q
        """
        self.config_path = config_path
        self.ldap_config_files = list(ldap_config_files or [])
        self.cli_options = dict(cli_options or {})
        self.verbosity = verbosity

        self.config = None
        self.options: Optional[RunOptions] = None
        self.sources: List[DirectorySourceConfig] = []
        self.store: Optional[UserStoreBase] = None
        self.ldap_client = None
        self.summary = RunSummary()

    def run(self) -> int:
        """
        Run the complete reconciliation.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.summary.start_time = datetime.now()

            self._load_configuration()
            self._setup_logging()

            logger.info("Starting LDAP Reconcile")
            if self.options.no_apply:
                logger.info("Running in no-apply mode, the user store will not be changed")

            if not self.options.dump_only:
                self._open_store()

            reconciler = Reconciler(self.store, self.options, self.summary)
            for source in self.sources:
                self._process_source(reconciler, source)

            if self.options.dump_only:
                logger.info("Dump only, skipping the disabling pass")
            elif self.summary.failed_sources:
                logger.error(f"Skipping the disabling pass, failed directory sources: "
                             f"{', '.join(self.summary.failed_sources)}")
            else:
                Disabler(self.store, self.options, self.summary).run(reconciler.processed)

            self.summary.finish()
            self._log_run_summary()
            self._send_run_summary()

            if self.summary.failed_sources:
                logger.warning(f"Run completed with {len(self.summary.failed_sources)} failed directory sources")
                return EXIT_SOURCE_FAILED
            logger.info("Run completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            self._send_failure_notification("LDAP Connection Failed", str(e))
            return EXIT_LDAP_CONNECTION
        except DataIntegrityError as e:
            logger.error(f"Data integrity error, aborting: {e}")
            self._send_failure_notification("User Store Data Integrity Error", str(e))
            return EXIT_DATA_INTEGRITY
        except UserStoreError as e:
            logger.error(f"User store error: {e}")
            self._send_failure_notification("User Store Failed", str(e))
            return EXIT_STORE_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Reconciliation Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def re_enable(self) -> int:
        """
        Clear the disabled reason of every disabled store account.

        Returns:
            Exit code
        """
        try:
            self._load_configuration()
            self._setup_logging()
            self._open_store()
            re_enable_all(self.store, self.options)
            return EXIT_OK
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except UserStoreError as e:
            logger.error(f"User store error: {e}")
            return EXIT_STORE_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path, self.ldap_config_files,
                                      dump_only=bool(self.cli_options.get('dump_only')))
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

        self.sources = build_sources(self.config)
        self.options = build_run_options(self.config, **self.cli_options)
        logger.debug("Configuration loaded successfully")

    def _setup_logging(self):
        """Configure logging based on configuration and verbosity."""
        setup_logging(self.config.get('logging', {}), self.verbosity)

    def _open_store(self):
        """Load the user store adapter and authenticate."""
        self.store = self._load_store_module(self.config['store'])
        if not self.store.authenticate():
            raise UserStoreError(f"Authentication failed for user store {self.store.name}")
        logger.info(f"Connected to user store: {self.store.name}")

    def _load_store_module(self, store_config: Dict[str, Any]) -> UserStoreBase:
        """Dynamically load the store module and create the adapter."""
        module_name = store_config['module']

        try:
            store_module = importlib.import_module(f"ldap_reconcile.stores.{module_name}")
        except ImportError as e:
            raise ConfigurationError(f"Failed to import user store module {module_name}: {e}")

        store_class = None
        for attr_name in dir(store_module):
            attr = getattr(store_module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, UserStoreBase) and
                    not inspect.isabstract(attr)):
                store_class = attr
                break

        if not store_class:
            raise ConfigurationError(f"No UserStoreBase implementation found in module {module_name}")

        try:
            return store_class(store_config)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Failed to initialize user store {module_name}: {e}")

    def _process_source(self, reconciler: Reconciler, source: DirectorySourceConfig):
        """
        Drain one directory source.

        A query failure marks the source as failed; a connection failure
        aborts the run.
        """
        logger.info(f"Processing directory source: {source.name}")
        self.ldap_client = LDAPClient(source)
        self.ldap_client.connect()

        try:
            reconciler.reconcile_source(self.ldap_client, source)
        except LDAPQueryError as e:
            logger.error(f"Directory source {source.name} failed: {e}")
            self.summary.failed_sources.append(source.name)
        finally:
            self.ldap_client.disconnect()
            self.ldap_client = None

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for fatal errors."""
        if not self.config:
            return
        try:
            send_failure_notification(title, error_message, self.config.get('notifications', {}))
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_run_summary(self):
        """Send email notification with the run summary."""
        try:
            send_run_summary(self.summary.as_dict(), self.config.get('notifications', {}))
        except Exception as e:
            logger.error(f"Failed to send summary notification: {e}")

    def _log_run_summary(self):
        """Log final reconciliation statistics."""
        summary = self.summary

        logger.info("=== Reconcile Summary ===")
        logger.info(f"Total runtime: {summary.runtime_seconds:.2f} seconds")
        logger.info(f"Processed {len(summary.processed)} users")
        logger.info(f"Added {len(summary.added)} new users")
        logger.info(f"Skipped {len(summary.skipped)} already defined users")
        logger.info(f"Found {len(summary.conflicts)} users with a different login")
        for email in summary.conflicts:
            logger.info(f"   Conflict: '{email}'")
        logger.info(f"Dropped {len(summary.invalid)} invalid users")
        for email in summary.invalid:
            logger.info(f"   Invalid address: '{email}'")
        if summary.failed:
            logger.info(f"Failed to write {len(summary.failed)} users")
            for email in summary.failed:
                logger.info(f"   {email}")
        logger.info(f"Disabled {len(summary.disabled)} users")
        for email in summary.disabled:
            logger.info(f"   {email}")
        if summary.ownership_blocked:
            logger.info(f"Kept {len(summary.ownership_blocked)} users still owning components")
            for email in summary.ownership_blocked:
                logger.info(f"   {email}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration, directory binds and user store authentication.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        directory_checks = {}
        for source in self.sources:
            if LDAPClient(source).test_connection():
                directory_checks[source.name] = {'status': 'pass', 'message': 'LDAP bind successful'}
            else:
                directory_checks[source.name] = {'status': 'fail', 'message': 'LDAP bind failed'}
                health_status['status'] = 'unhealthy'
        health_status['checks']['directories'] = directory_checks

        if not self.options.dump_only:
            try:
                self._open_store()
                health_status['checks']['store'] = {
                    'status': 'pass',
                    'message': 'User store authentication successful'
                }
            except (ConfigurationError, UserStoreError) as e:
                health_status['checks']['store'] = {
                    'status': 'fail',
                    'message': f'User store check failed: {e}'
                }
                health_status['status'] = 'unhealthy'
            finally:
                self._cleanup()

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.ldap_client:
            self.ldap_client.disconnect()
            self.ldap_client = None
        if self.store:
            self.store.close_connection()


def build_parser():
    """Create the command line parser."""
    import argparse

    parser = argparse.ArgumentParser(
        prog='ldap-reconcile',
        description='Create, repair and disable user store accounts from LDAP/AD'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--ldap-config', action='append', default=[], metavar='FILE',
                        help='Directory source file, one source per file (repeatable)')
    parser.add_argument('--local-user', action='append', default=[], metavar='EMAIL',
                        help='Local-only account never disabled; a trailing * matches a prefix (repeatable)')
    parser.add_argument('--dump-only', action='store_true',
                        help='Only run the LDAP search and dump the entries')
    parser.add_argument('--all-attributes', action='store_true',
                        help='Fetch every readable attribute during the search')
    parser.add_argument('--report-all', action='store_true',
                        help='Also report the users already defined in the user store')
    parser.add_argument('--no-run', '--no-apply', dest='no_apply', action='store_true',
                        help='Simulate the run without changing the user store')
    parser.add_argument('--no-update', action='store_true',
                        help='Report, but do not repair, logins that differ from LDAP')
    parser.add_argument('--verbose', '-v', action='count', default=0, help='Increase verbosity')
    parser.add_argument('--quiet', '-q', action='count', default=0, help='Decrease verbosity')
    parser.add_argument('--re-enable', action='store_true',
                        help='Re-enable every disabled user store account and exit')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of reconciling')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    import json

    args = build_parser().parse_args(argv)

    cli_options = {
        'dump_only': args.dump_only,
        'all_attributes': args.all_attributes,
        'report_all': args.report_all,
        'no_apply': args.no_apply,
        'no_update': args.no_update,
        'local_users': args.local_user,
    }
    orchestrator = ReconcileOrchestrator(
        config_path=args.config,
        ldap_config_files=args.ldap_config,
        cli_options=cli_options,
        verbosity=args.verbose - args.quiet
    )

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)
    elif args.re_enable:
        sys.exit(orchestrator.re_enable())
    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
