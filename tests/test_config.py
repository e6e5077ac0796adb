#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers loading, validation, defaults and environment variable overrides.
"""

import os
import sys
import tempfile
import yaml
import unittest
from unittest.mock import patch

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.valid_config = {
            'directory': {
                'server_url': 'ldaps://dc1.example.com:636',
                'bind_dn': 'cn=Administrator,cn=Users,dc=example,dc=com',
                'bind_password': 'password',
                'root': 'dc=example,dc=com',
                'containers': ['ou=People', 'ou=Groups'],
            },
            'logging': {
                'level': 'DEBUG',
            },
        }

    def _write_config(self, config_data):
        """Write config data to a temporary file and return its path."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            if isinstance(config_data, str):
                f.write(config_data)
            else:
                yaml.dump(config_data, f)
        self.addCleanup(os.unlink, f.name)
        return f.name

    def test_load_valid_config(self):
        """Test loading a valid configuration file."""
        config = ConfigLoader(self._write_config(self.valid_config)).load()

        self.assertEqual(config['directory']['root'], 'dc=example,dc=com')
        self.assertEqual(config['directory']['containers'], ['ou=People', 'ou=Groups'])
        self.assertEqual(config['logging']['level'], 'DEBUG')

    def test_defaults_applied(self):
        """Optional settings get their defaults."""
        config = load_config(self._write_config(self.valid_config))

        directory = config['directory']
        self.assertEqual(directory['min_uid'], 1000)
        self.assertEqual(directory['min_gid'], 1000)
        self.assertTrue(directory['verify_ssl'])
        self.assertFalse(directory['start_tls'])
        self.assertEqual(directory['page_size'], 1000)
        self.assertEqual(config['logging']['retention_days'], 7)
        self.assertEqual(config['logging']['console_level'], 'WARNING')
        self.assertEqual(config['error_handling'], {'max_retries': 3, 'retry_wait_seconds': 5})
        self.assertIs(directory['error_handling'], config['error_handling'])

    def test_file_not_found(self):
        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader('/nonexistent/config.yaml').load()
        self.assertIn("not found", str(context.exception))

    def test_invalid_yaml(self):
        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self._write_config("directory: [unclosed")).load()
        self.assertIn("Invalid YAML", str(context.exception))

    def test_missing_directory_section(self):
        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self._write_config({'logging': {'level': 'INFO'}})).load()
        self.assertIn("Missing required section: directory", str(context.exception))

    def test_all_errors_reported_together(self):
        """Validation collects every problem into one error."""
        config = self.valid_config
        del config['directory']['bind_dn']
        config['directory']['root'] = 'ou=Somewhere'
        config['directory']['containers'] = ['ou=People', 'People']
        config['directory']['min_uid'] = -1
        config['logging']['level'] = 'LOUD'

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self._write_config(config)).load()

        message = str(context.exception)
        self.assertIn("Missing required directory field: bind_dn", message)
        self.assertIn("must contain dc= components", message)
        self.assertIn("directory.containers[1] must start with ou= or cn=", message)
        self.assertIn("directory.min_uid must be a non-negative integer", message)
        self.assertIn("Invalid logging level: LOUD", message)

    def test_containers_must_be_a_list(self):
        self.valid_config['directory']['containers'] = 'ou=People'

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self._write_config(self.valid_config)).load()
        self.assertIn("directory.containers must be a list", str(context.exception))

    def test_negative_retry_settings(self):
        self.valid_config['error_handling'] = {'max_retries': -2}

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self._write_config(self.valid_config)).load()

    @patch.dict(os.environ, {'AD_BIND_PASSWORD': 'from-env', 'AD_SERVER_URL': 'ldap://dc2.example.com'})
    def test_environment_overrides(self):
        """Secrets from the environment replace file values."""
        config = load_config(self._write_config(self.valid_config))

        self.assertEqual(config['directory']['bind_password'], 'from-env')
        self.assertEqual(config['directory']['server_url'], 'ldap://dc2.example.com')

    @patch.dict(os.environ, {'AD_BIND_PASSWORD': 'from-env'})
    def test_environment_supplies_missing_password(self):
        del self.valid_config['directory']['bind_password']

        config = load_config(self._write_config(self.valid_config))

        self.assertEqual(config['directory']['bind_password'], 'from-env')

    def test_config_path_from_environment(self):
        path = self._write_config(self.valid_config)

        with patch.dict(os.environ, {'CONFIG_PATH': path}):
            loader = ConfigLoader()

        self.assertEqual(loader.config_path, path)


if __name__ == '__main__':
    unittest.main()
