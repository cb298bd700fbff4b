"""
Command line host for LDAP object reconciliation.

This module loads the declared objects from configuration, connects to the
directory and converges every object to its declared state.
"""

import sys
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ldap_reconcile.config import ConfigurationError, declared_objects, load_config
from ldap_reconcile.errors import LDAPConnectionError, ReconcileError
from ldap_reconcile.ldap_client import DirectoryClient
from ldap_reconcile.logging_setup import setup_logging
from ldap_reconcile.reconciler import CREATE, NOOP, UPDATE, ObjectReconciler, Plan

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_CONFIG = 2
EXIT_CONNECTION = 3
EXIT_UNEXPECTED = 4


def plan_to_dict(plan: Plan) -> Dict[str, Any]:
    """JSON friendly representation of a plan."""
    return {
        'dn': plan.dn,
        'action': plan.action,
        'object_classes': plan.object_classes,
        'deltas': [
            {'operation': type(d).__name__.lower(), 'name': d.name, 'values': list(d.values)}
            for d in plan.deltas
        ],
    }


class ReconcileOrchestrator:
    """
    Runs one reconciliation pass over all declared objects.

    A failing object is logged and counted; the remaining objects are still
    processed.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False,
                 client: Optional[DirectoryClient] = None):
        """
        Initialize the orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Compute plans without writing to the directory
            client: Directory client to use instead of connecting from configuration
        """
        self.config = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.client = client
        self._owns_client = False
        self.plans: List[Plan] = []
        self.stats = {
            'objects_processed': 0,
            'objects_failed': 0,
            'created': 0,
            'updated': 0,
            'unchanged': 0,
            'not_converged': 0,
            'start_time': None,
            'runtime_seconds': 0,
        }

    def run(self) -> int:
        """
        Run the reconciliation pass.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.stats['start_time'] = datetime.now()
            self.config = load_config(self.config_path)
            setup_logging(self.config.get('logging', {}))
            objects = declared_objects(self.config)

            logger.info(f"Starting reconciliation of {len(objects)} objects{' (dry run)' if self.dry_run else ''}")
            self._connect_ldap()
            self._process_objects(objects)

            self.stats['runtime_seconds'] = (datetime.now() - self.stats['start_time']).total_seconds()
            self._log_summary()

            if self.stats['objects_failed'] > 0:
                logger.warning(f"Reconciliation completed with {self.stats['objects_failed']} failures")
                return EXIT_PARTIAL
            logger.info("Reconciliation completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG
        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            return EXIT_CONNECTION
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _connect_ldap(self):
        if self.client is not None:
            return
        self.client = DirectoryClient(self.config['ldap'])
        try:
            self.client.connect()
        except LDAPConnectionError:
            self.client = None
            raise
        self._owns_client = True

    def _process_objects(self, objects):
        reconciler = ObjectReconciler(self.client)
        for obj in objects:
            try:
                plan = reconciler.apply(obj, dry_run=self.dry_run)
            except ReconcileError as e:
                logger.error(f"Failed to reconcile {obj.dn!r}: {e}")
                self.stats['objects_failed'] += 1
                continue

            self.plans.append(plan)
            if not plan.converged:
                logger.error(f"Object {obj.dn!r} did not converge after {plan.action}")
                self.stats['not_converged'] += 1
                self.stats['objects_failed'] += 1
                continue

            self.stats['objects_processed'] += 1
            if plan.action == CREATE:
                self.stats['created'] += 1
            elif plan.action == UPDATE:
                self.stats['updated'] += 1
            elif plan.action == NOOP:
                self.stats['unchanged'] += 1

    def _log_summary(self):
        stats = self.stats
        logger.info("=== Reconciliation Summary ===")
        logger.info(f"Total runtime: {stats['runtime_seconds']:.2f} seconds")
        logger.info(f"Objects processed: {stats['objects_processed']}")
        logger.info(f"Objects failed: {stats['objects_failed']}")
        logger.info(f"Not converged after writing: {stats['not_converged']}")
        logger.info(f"Created: {stats['created']}, updated: {stats['updated']}, unchanged: {stats['unchanged']}")

    @property
    def drifted(self) -> bool:
        return any(plan.changed for plan in self.plans)

    def _cleanup(self):
        # A client passed in by the caller stays open
        if self.client and self._owns_client:
            self.client.disconnect()
            self._owns_client = False


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='Reconcile declared LDAP objects against a directory server')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print the changes without applying them')
    parser.add_argument('--check', action='store_true',
                        help='Exit with status 1 if any object would change (implies --dry-run)')

    args = parser.parse_args()

    orchestrator = ReconcileOrchestrator(config_path=args.config, dry_run=args.dry_run or args.check)
    exit_code = orchestrator.run()

    if orchestrator.dry_run:
        print(json.dumps([plan_to_dict(p) for p in orchestrator.plans], indent=2))
        if args.check and exit_code == EXIT_OK and orchestrator.drifted:
            exit_code = EXIT_PARTIAL

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
