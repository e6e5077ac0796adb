#!/usr/bin/env python3
"""
Unit tests for Active Directory attribute handling.
"""

import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from ad_sync.attributes import (
    GROUP_GLOBAL_SECURITY,
    GROUP_UNIVERSAL_DISTRIBUTION,
    PASSWORD_SYMBOLS,
    container_create_attributes,
    encode_password,
    generate_password,
    group_create_attributes,
    group_entry_attributes,
    group_type_to_str,
    sid_to_rid,
    unix_member_attributes,
    user_create_attributes,
    user_entry_attributes,
)
from ad_sync.connector import Entry
from ad_sync.container import Container
from ad_sync.directory import ActiveDirectory
from ad_sync.group import Group, PosixGroup
from ad_sync.user import User, PosixAccount

from fake_connector import make_sid


class TestSid(unittest.TestCase):
    """Test cases for objectSid decoding."""

    def test_rid_is_last_sub_authority(self):
        self.assertEqual(sid_to_rid(make_sid(1105)), 1105)
        self.assertEqual(sid_to_rid(make_sid(513)), 513)

    def test_large_rid_is_unsigned(self):
        self.assertEqual(sid_to_rid(make_sid(0xFFFFFFF0)), 0xFFFFFFF0)

    def test_malformed_sids(self):
        with self.assertRaises(ValueError):
            sid_to_rid(b'\x01\x05')
        with self.assertRaises(ValueError):
            sid_to_rid(bytes([1, 0, 0, 0, 0, 0, 0, 5]))
        with self.assertRaises(ValueError):
            sid_to_rid(make_sid(500)[:-2])


class TestHelpers(unittest.TestCase):
    """Test cases for small attribute helpers."""

    def test_group_type_to_str(self):
        self.assertEqual(group_type_to_str(GROUP_GLOBAL_SECURITY), 'GROUP_GLOBAL_SECURITY')
        self.assertEqual(group_type_to_str(99), 'UNKNOWN')

    def test_encode_password(self):
        self.assertEqual(encode_password('Pw1!'), '"Pw1!"'.encode('utf-16-le'))

    def test_generate_password_complexity(self):
        password = generate_password()

        self.assertEqual(len(password), 16)
        self.assertTrue(any(c.islower() for c in password))
        self.assertTrue(any(c.isupper() for c in password))
        self.assertTrue(any(c.isdigit() for c in password))
        self.assertTrue(any(c in PASSWORD_SYMBOLS for c in password))

    def test_container_create_attributes(self):
        self.assertEqual(container_create_attributes('ou=People'),
                         {'objectClass': ['top', 'organizationalUnit'], 'name': 'People'})
        self.assertEqual(container_create_attributes('CN=Things'),
                         {'objectClass': ['top', 'container'], 'name': 'Things'})
        self.assertIsNone(container_create_attributes('dc=example'))


class TestEntryAttributes(unittest.TestCase):
    """Test cases for reading directory entries."""

    def test_group_entry(self):
        entry = Entry('cn=staff,ou=People,dc=example,dc=com', {
            'name': ['staff'],
            'objectSid': [make_sid(1200)],
            'groupType': [str(GROUP_UNIVERSAL_DISTRIBUTION)],
            'gidNumber': ['2000'],
            'msSFU30NisDomain': ['example'],
        })

        attributes = group_entry_attributes(entry)

        self.assertEqual(attributes['name'], 'staff')
        self.assertEqual(attributes['rid'], 1200)
        self.assertEqual(attributes['type'], GROUP_UNIVERSAL_DISTRIBUTION)
        self.assertEqual(attributes['gid'], 2000)
        self.assertEqual(attributes['nis_domain'], 'example')
        self.assertIsNone(attributes['unix_password'])

    def test_group_entry_without_sid(self):
        with self.assertRaises(ValueError):
            group_entry_attributes(Entry('cn=x,dc=example,dc=com', {'name': ['x']}))

    def test_user_entry(self):
        entry = Entry('cn=alice,ou=People,dc=example,dc=com', {
            'sAMAccountName': ['alice'],
            'objectSid': [make_sid(1201)],
            'primaryGroupID': ['513'],
            'userAccountControl': ['66050'],
            'pwdLastSet': ['0'],
            'givenName': ['Alice'],
            'sn': ['Smith'],
            'uidNumber': ['5000'],
            'gidNumber': ['2000'],
            'loginShell': ['/bin/bash'],
            'shadowMax': ['90'],
        })

        attributes = user_entry_attributes(entry)

        self.assertEqual(attributes['username'], 'alice')
        self.assertEqual(attributes['rid'], 1201)
        self.assertEqual(attributes['primary_group_rid'], 513)
        # 66050 = NORMAL_ACCOUNT | ACCOUNTDISABLE | DONT_EXPIRE_PASSWORD
        self.assertTrue(attributes['disabled'])
        self.assertTrue(attributes['must_change_password'])
        self.assertEqual(attributes['first_name'], 'Alice')
        self.assertEqual(attributes['surname'], 'Smith')
        self.assertEqual(attributes['uid'], 5000)
        self.assertEqual(attributes['gid'], 2000)
        self.assertEqual(attributes['shell'], '/bin/bash')
        self.assertEqual(attributes['shadow_max'], 90)
        self.assertIsNone(attributes['shadow_min'])
        self.assertIsNone(attributes['home_directory'])

    def test_user_entry_enabled(self):
        entry = Entry('cn=bob,dc=example,dc=com', {
            'sAMAccountName': ['bob'],
            'objectSid': [make_sid(1202)],
            'userAccountControl': ['512'],
        })

        attributes = user_entry_attributes(entry)

        self.assertFalse(attributes['disabled'])
        self.assertFalse(attributes['must_change_password'])
        self.assertIsNone(attributes['primary_group_rid'])


class TestCreateAttributes(unittest.TestCase):
    """Test cases for the attribute sets sent when creating objects."""

    def setUp(self):
        self.directory = ActiveDirectory('dc=example,dc=com')
        self.people = Container('ou=People', self.directory)
        self.domain_users = Group('Domain Users', self.directory.cn_users, rid=513)
        self.staff = Group('staff', self.people, posix=PosixGroup(gid=2000))

    def test_windows_group(self):
        group = Group('devs', self.people)

        attributes = group_create_attributes(group)

        self.assertEqual(attributes['objectClass'], ['top', 'group'])
        self.assertEqual(attributes['groupType'], str(GROUP_GLOBAL_SECURITY))
        self.assertEqual(attributes['sAMAccountName'], 'devs')
        self.assertEqual(attributes['description'], 'Group devs')
        self.assertNotIn('gidNumber', attributes)

    def test_unix_group(self):
        attributes = group_create_attributes(self.staff)

        self.assertEqual(attributes['description'], 'UNIX group staff')
        self.assertEqual(attributes['gidNumber'], '2000')
        self.assertEqual(attributes['msSFU30Name'], 'staff')
        self.assertEqual(attributes['msSFU30NisDomain'], 'radum')
        self.assertEqual(attributes['unixUserPassword'], '*')

    def test_windows_user(self):
        user = User('jdoe', self.people, self.domain_users, disabled=True)
        user.first_name = 'John'
        user.surname = 'Doe'
        user.password = 'Secret1!'
        user.force_change_password()

        attributes = user_create_attributes(user, self.directory.domain, 513)

        self.assertEqual(attributes['sAMAccountName'], 'jdoe')
        self.assertEqual(attributes['userPrincipalName'], 'jdoe@example.com')
        self.assertEqual(attributes['userAccountControl'], '514')
        self.assertEqual(attributes['primaryGroupID'], '513')
        self.assertEqual(attributes['displayName'], 'John Doe')
        self.assertEqual(attributes['givenName'], 'John')
        self.assertEqual(attributes['sn'], 'Doe')
        self.assertEqual(attributes['unicodePwd'], encode_password('Secret1!'))
        self.assertEqual(attributes['pwdLastSet'], '0')
        self.assertNotIn('initials', attributes)
        self.assertNotIn('uidNumber', attributes)

    def test_unix_user(self):
        user = User('alice', self.people, self.domain_users,
                    posix=PosixAccount(uid=5000, unix_main_group=self.staff,
                                       shell='/bin/bash', shadow_warning=7))

        attributes = user_create_attributes(user, self.directory.domain, 513)

        self.assertEqual(attributes['userAccountControl'], '512')
        self.assertEqual(attributes['uidNumber'], '5000')
        self.assertEqual(attributes['gidNumber'], '2000')
        self.assertEqual(attributes['loginShell'], '/bin/bash')
        self.assertEqual(attributes['gecos'], 'alice')
        self.assertEqual(attributes['msSFU30Name'], 'alice')
        self.assertEqual(attributes['shadowWarning'], '7')
        self.assertNotIn('unixHomeDirectory', attributes)
        self.assertNotIn('shadowMax', attributes)
        self.assertNotIn('unicodePwd', attributes)
        self.assertNotIn('pwdLastSet', attributes)

    def test_unix_member_attributes(self):
        alice = User('alice', self.people, self.domain_users,
                     posix=PosixAccount(uid=5000, unix_main_group=self.staff))
        bob = User('bob', self.people, self.domain_users)

        attributes = unix_member_attributes([alice, bob])

        self.assertEqual(attributes['memberUid'], ['alice'])
        self.assertEqual(attributes['msSFU30PosixMember'], [alice.distinguished_name])
        self.assertEqual(unix_member_attributes([bob]), {})


if __name__ == '__main__':
    unittest.main()
