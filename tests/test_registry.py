#!/usr/bin/env python3
"""
Unit tests for the identifier registry.
"""

import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_sync.exceptions import DuplicateIdentifierError, InvariantViolation
from ad_sync.registry import IdentityRegistry, RID, UID, GID


class TestIdentityRegistry(unittest.TestCase):
    """Test cases for IdentityRegistry."""

    def setUp(self):
        self.registry = IdentityRegistry()

    def test_reserve_and_release(self):
        """Reserved values are reported until released."""
        self.registry.reserve(UID, 5000)
        self.assertTrue(self.registry.is_reserved(UID, 5000))

        self.registry.release(UID, 5000)
        self.assertFalse(self.registry.is_reserved(UID, 5000))

    def test_duplicate_reservation_raises(self):
        """A value can only be reserved once per namespace."""
        self.registry.reserve(GID, 2000)

        with self.assertRaises(DuplicateIdentifierError) as context:
            self.registry.reserve(GID, 2000)

        self.assertEqual(context.exception.namespace, GID)
        self.assertEqual(context.exception.value, 2000)
        self.assertIn("GID 2000", str(context.exception))
        self.assertIsInstance(context.exception, InvariantViolation)

    def test_namespaces_are_independent(self):
        """The same number can be a RID, a UID and a GID at once."""
        self.registry.reserve(RID, 1000)
        self.registry.reserve(UID, 1000)
        self.registry.reserve(GID, 1000)

        self.assertEqual(self.registry.values(RID), [1000])
        self.assertEqual(self.registry.values(UID), [1000])
        self.assertEqual(self.registry.values(GID), [1000])

    def test_missing_rid_is_allowed(self):
        """A RID handed out later by the directory may be None for now."""
        self.registry.reserve(RID, None)
        self.assertEqual(self.registry.values(RID), [])

    def test_missing_uid_or_gid_raises(self):
        """POSIX ids are always required."""
        for namespace in (UID, GID):
            with self.assertRaises(DuplicateIdentifierError) as context:
                self.registry.reserve(namespace, None)
            self.assertIn("required", str(context.exception))

    def test_release_is_idempotent(self):
        """Releasing an unknown or missing value does nothing."""
        self.registry.release(UID, 42)
        self.registry.release(UID, None)
        self.assertEqual(self.registry.values(UID), [])

    def test_values_are_sorted(self):
        for value in (1003, 1001, 1002):
            self.registry.reserve(UID, value)
        self.assertEqual(self.registry.values(UID), [1001, 1002, 1003])

    def test_unknown_namespace(self):
        with self.assertRaises(ValueError):
            self.registry.reserve('sid', 1)


if __name__ == '__main__':
    unittest.main()
