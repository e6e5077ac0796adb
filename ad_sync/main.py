"""
Main orchestrator for AD Sync.

Loads the configured containers from Active Directory into the in-memory
model and, for the ``sync`` command, creates anything that exists locally but
not in the directory.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, Optional

from ad_sync.config import load_config, ConfigurationError
from ad_sync.connector import LDAPConnector, DirectoryConnectionError
from ad_sync.container import Container
from ad_sync.directory import ActiveDirectory, ReconcileReport
from ad_sync.logging_setup import setup_logging

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_OBJECT_ERRORS = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4


class SyncOrchestrator:
    """
    Runs a load or sync against the configured directory.

    Per-object problems are collected in the run statistics and turn into a
    non-zero exit code; configuration and connection problems abort the run.
    """

    def __init__(self, config_path: Optional[str] = None, command: str = 'sync'):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            command: 'load' to only read the directory, 'sync' to also create objects
        """
        self.config = None
        self.config_path = config_path
        self.command = command
        self.connector = None
        self.directory = None

        self.sync_stats = {
            'command': command,
            'containers': 0,
            'groups_loaded': 0,
            'users_loaded': 0,
            'memberships_loaded': 0,
            'containers_created': 0,
            'groups_created': 0,
            'users_created': 0,
            'memberships_created': 0,
            'warnings': 0,
            'errors': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
        }

    def run(self) -> int:
        """
        Run the configured command.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info(f"Starting AD Sync ({self.command})")

            self._build_directory()
            self._connect()

            self._record(self.directory.load(self.connector))
            if self.command == 'sync':
                self._record(self.directory.sync(self.connector))

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()

            if self.sync_stats['errors'] > 0:
                logger.warning(f"{self.command} completed with {self.sync_stats['errors']} errors")
                return EXIT_OBJECT_ERRORS

            logger.info(f"{self.command} completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except DirectoryConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            return EXIT_CONNECTION_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
            logger.debug("Configuration loaded successfully")
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _build_directory(self):
        """Create the directory model and the configured containers."""
        directory_config = self.config['directory']
        self.directory = ActiveDirectory(
            directory_config['root'],
            min_uid=directory_config.get('min_uid', 1000),
            min_gid=directory_config.get('min_gid', 1000)
        )

        for name in directory_config.get('containers', []):
            if self.directory.find_container(name):
                logger.debug(f"Container {name} already configured")
                continue
            Container(name, self.directory)

        self.sync_stats['containers'] = len(self.directory.containers)
        logger.debug(f"Managing {self.sync_stats['containers']} containers under {self.directory.root}")

    def _connect(self):
        """Establish the directory connection."""
        error_config = self.config.get('error_handling', {})
        self.connector = LDAPConnector(self.config['directory'])

        try:
            self.connector.connect(
                max_retries=error_config.get('max_retries', 3),
                retry_wait=error_config.get('retry_wait_seconds', 5)
            )
        except DirectoryConnectionError:
            self.connector = None
            raise

    def _record(self, report: ReconcileReport):
        for name, value in report.counts.items():
            if name in self.sync_stats:
                self.sync_stats[name] += value
        self.sync_stats['warnings'] += len(report.warnings)
        self.sync_stats['errors'] += len(report.errors)

    def _log_sync_summary(self):
        """Log final statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info(f"=== {stats['command'].capitalize()} Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Containers managed: {stats['containers']}")
        logger.info(f"Groups loaded: {stats['groups_loaded']}")
        logger.info(f"Users loaded: {stats['users_loaded']}")
        logger.info(f"Memberships loaded: {stats['memberships_loaded']}")
        if stats['command'] == 'sync':
            logger.info(f"Containers created: {stats['containers_created']}")
            logger.info(f"Groups created: {stats['groups_created']}")
            logger.info(f"Users created: {stats['users_created']}")
            logger.info(f"Memberships created: {stats['memberships_created']}")
        logger.info(f"Warnings: {stats['warnings']}")
        logger.info(f"Errors: {stats['errors']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of configuration and directory connectivity.

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
        except Exception as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if self.config:
            try:
                test_connector = LDAPConnector(self.config['directory'])
                test_connector.connect(max_retries=1, retry_wait=1)
                test_connector.disconnect()

                health_status['checks']['directory'] = {
                    'status': 'pass',
                    'message': 'Directory connection successful'
                }
            except Exception as e:
                health_status['checks']['directory'] = {
                    'status': 'fail',
                    'message': f'Directory connection failed: {e}'
                }
                health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.connector:
            self.connector.disconnect()


def main(argv=None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Active Directory load and sync')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                       help='Perform health check instead of load/sync')
    parser.add_argument('command', nargs='?', choices=['load', 'sync'], default='sync',
                       help='load only reads the directory; sync also creates missing objects')

    args = parser.parse_args(argv)

    orchestrator = SyncOrchestrator(config_path=args.config, command=args.command)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
