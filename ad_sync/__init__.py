"""
AD Sync - Manage Active Directory users, groups and containers from Python.

This package keeps an in-memory model of the containers, groups and users of
an Active Directory domain, including their optional UNIX attributes, loads it
from the directory over LDAP and creates whatever exists only locally.
"""

__version__ = "1.0.0"
__author__ = "AD Sync Team"

from ad_sync.exceptions import InvariantViolation, DuplicateIdentifierError
from ad_sync.container import Container
from ad_sync.group import Group, PosixGroup
from ad_sync.user import User, PosixAccount
from ad_sync.directory import ActiveDirectory, ReconcileReport

__all__ = [
    'ActiveDirectory',
    'Container',
    'DuplicateIdentifierError',
    'Group',
    'InvariantViolation',
    'PosixAccount',
    'PosixGroup',
    'ReconcileReport',
    'User',
]
