"""
Active Directory attribute handling.

This module holds the numeric constants Active Directory uses for group types
and account control flags, decodes binary objectSid values, turns directory
entries into plain attribute dictionaries for the loader, and builds the
attribute sets used when creating new objects.
"""

import logging
import secrets
import string
import struct
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

# groupType values ({domain local, global, universal} x {security, distribution})
GROUP_DOMAIN_LOCAL_SECURITY = -2147483644
GROUP_DOMAIN_LOCAL_DISTRIBUTION = 0x4
GROUP_GLOBAL_SECURITY = -2147483646
GROUP_GLOBAL_DISTRIBUTION = 0x2
GROUP_UNIVERSAL_SECURITY = -2147483640
GROUP_UNIVERSAL_DISTRIBUTION = 0x8

GROUP_TYPE_NAMES = {
    GROUP_DOMAIN_LOCAL_SECURITY: 'GROUP_DOMAIN_LOCAL_SECURITY',
    GROUP_DOMAIN_LOCAL_DISTRIBUTION: 'GROUP_DOMAIN_LOCAL_DISTRIBUTION',
    GROUP_GLOBAL_SECURITY: 'GROUP_GLOBAL_SECURITY',
    GROUP_GLOBAL_DISTRIBUTION: 'GROUP_GLOBAL_DISTRIBUTION',
    GROUP_UNIVERSAL_SECURITY: 'GROUP_UNIVERSAL_SECURITY',
    GROUP_UNIVERSAL_DISTRIBUTION: 'GROUP_UNIVERSAL_DISTRIBUTION',
}

# Only security groups with domain-wide scope can be a primary group.
PRIMARY_GROUP_TYPES = (GROUP_GLOBAL_SECURITY, GROUP_UNIVERSAL_SECURITY)

# userAccountControl flags
UF_ACCOUNTDISABLE = 0x0002
UF_NORMAL_ACCOUNT = 0x0200

DEFAULT_NIS_DOMAIN = 'radum'
DEFAULT_UNIX_PASSWORD = '*'

GROUP_OBJECT_CLASSES = ['top', 'group']
USER_OBJECT_CLASSES = ['top', 'person', 'organizationalPerson', 'user']

PASSWORD_SYMBOLS = '!#$%&*+-=?@^_'

SHADOW_ATTRIBUTES = {
    'shadow_expire': 'shadowExpire',
    'shadow_flag': 'shadowFlag',
    'shadow_inactive': 'shadowInactive',
    'shadow_last_change': 'shadowLastChange',
    'shadow_max': 'shadowMax',
    'shadow_min': 'shadowMin',
    'shadow_warning': 'shadowWarning',
}


def group_type_to_str(group_type: int) -> str:
    """Return the constant name for a groupType value, or 'UNKNOWN'."""
    return GROUP_TYPE_NAMES.get(group_type, 'UNKNOWN')


def is_valid_group_type(group_type: int) -> bool:
    return group_type in GROUP_TYPE_NAMES


def sid_to_rid(sid_bytes: bytes) -> int:
    """
    Extract the relative id from a binary security identifier.

    SID structure:
        Byte 0: Revision
        Byte 1: Number of sub-authorities
        Bytes 2-7: Identifier authority (big-endian)
        Remaining: Sub-authorities (little-endian 32-bit)

    The relative id is the last sub-authority.

    Args:
        sid_bytes: Binary objectSid value

    Returns:
        Relative id as an unsigned integer

    Raises:
        ValueError: If the value is not a well formed SID
    """
    if not sid_bytes or len(sid_bytes) < 8:
        raise ValueError("SID value is too short")

    sub_auth_count = sid_bytes[1]
    if sub_auth_count == 0:
        raise ValueError("SID has no sub-authorities")

    expected_length = 8 + 4 * sub_auth_count
    if len(sid_bytes) < expected_length:
        raise ValueError(
            f"SID declares {sub_auth_count} sub-authorities but is only {len(sid_bytes)} bytes"
        )

    sub_auths = struct.unpack(f'<{sub_auth_count}I', sid_bytes[8:expected_length])
    return sub_auths[-1]


def encode_password(password: str) -> bytes:
    """Encode a password the way unicodePwd expects: quoted, UTF-16LE."""
    return f'"{password}"'.encode('utf-16-le')


def generate_password(length: int = 16) -> str:
    """
    Generate a random password that satisfies the default AD complexity rules.

    The result always contains a lowercase letter, an uppercase letter, a digit
    and a symbol.
    """
    pools = [string.ascii_lowercase, string.ascii_uppercase, string.digits, PASSWORD_SYMBOLS]
    alphabet = ''.join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return ''.join(chars)


def _first_int(entry, name: str) -> Optional[int]:
    value = entry.first(name)
    if value is None or value == '':
        return None
    return int(value)


def group_entry_attributes(entry) -> Dict[str, Any]:
    """
    Read the attributes of a group entry the loader cares about.

    Optional POSIX attributes are None when absent.

    Args:
        entry: Directory entry for a group

    Returns:
        Dictionary with name, rid, type, gid, nis_domain and unix_password

    Raises:
        ValueError: If a mandatory attribute is missing or malformed
    """
    name = entry.first('name') or entry.first('cn') or entry.first('sAMAccountName')
    if not name:
        raise ValueError(f"Group entry has no name: {entry.dn}")

    sid = entry.first('objectSid')
    if sid is None:
        raise ValueError(f"Group entry has no objectSid: {entry.dn}")

    group_type = _first_int(entry, 'groupType')

    return {
        'name': name,
        'rid': sid_to_rid(sid),
        'type': group_type if group_type is not None else GROUP_GLOBAL_SECURITY,
        'gid': _first_int(entry, 'gidNumber'),
        'nis_domain': entry.first('msSFU30NisDomain'),
        'unix_password': entry.first('unixUserPassword'),
        'distinguished_name': entry.dn,
    }


def user_entry_attributes(entry) -> Dict[str, Any]:
    """
    Read the attributes of a user entry the loader cares about.

    Every optional attribute is None when absent so callers can leave the
    model defaults in place.

    Args:
        entry: Directory entry for a user

    Returns:
        Dictionary of user attributes keyed by model field name

    Raises:
        ValueError: If a mandatory attribute is missing or malformed
    """
    username = entry.first('sAMAccountName')
    if not username:
        raise ValueError(f"User entry has no sAMAccountName: {entry.dn}")

    sid = entry.first('objectSid')
    if sid is None:
        raise ValueError(f"User entry has no objectSid: {entry.dn}")

    account_control = _first_int(entry, 'userAccountControl') or UF_NORMAL_ACCOUNT
    pwd_last_set = _first_int(entry, 'pwdLastSet')

    attributes = {
        'username': username,
        'rid': sid_to_rid(sid),
        'primary_group_rid': _first_int(entry, 'primaryGroupID'),
        'distinguished_name': entry.first('distinguishedName') or entry.dn,
        'disabled': bool(account_control & UF_ACCOUNTDISABLE),
        'must_change_password': pwd_last_set == 0,
        'first_name': entry.first('givenName'),
        'initials': entry.first('initials'),
        'middle_name': entry.first('middleName'),
        'surname': entry.first('sn'),
        'script_path': entry.first('scriptPath'),
        'profile_path': entry.first('profilePath'),
        'local_path': entry.first('homeDirectory'),
        'local_drive': entry.first('homeDrive'),
        'uid': _first_int(entry, 'uidNumber'),
        'gid': _first_int(entry, 'gidNumber'),
        'shell': entry.first('loginShell'),
        'home_directory': entry.first('unixHomeDirectory'),
        'nis_domain': entry.first('msSFU30NisDomain'),
        'gecos': entry.first('gecos'),
        'unix_password': entry.first('unixUserPassword'),
    }

    for field, ldap_name in SHADOW_ATTRIBUTES.items():
        attributes[field] = _first_int(entry, ldap_name)

    return attributes


def container_create_attributes(component: str) -> Optional[Dict[str, Any]]:
    """
    Build the attributes for one ``ou=`` or ``cn=`` path component.

    Returns None for a component type that cannot be created.
    """
    kind, _, value = component.partition('=')
    kind = kind.lower()

    if kind == 'ou':
        return {'objectClass': ['top', 'organizationalUnit'], 'name': value}
    if kind == 'cn':
        return {'objectClass': ['top', 'container'], 'name': value}
    return None


def group_create_attributes(group) -> Dict[str, Any]:
    """Build the attribute set for creating a group."""
    attributes = {
        'objectClass': list(GROUP_OBJECT_CLASSES),
        'groupType': str(group.type),
        'sAMAccountName': group.name,
    }

    if group.is_unix:
        attributes.update({
            'description': f"UNIX group {group.name}",
            'gidNumber': str(group.gid),
            'msSFU30Name': group.name,
            'msSFU30NisDomain': group.posix.nis_domain,
            'unixUserPassword': group.posix.unix_password,
        })
    else:
        attributes['description'] = f"Group {group.name}"

    return attributes


def user_create_attributes(user, domain: str, primary_group_rid: int) -> Dict[str, Any]:
    """
    Build the attribute set for creating a user.

    Args:
        user: User being created
        domain: DNS domain used for the userPrincipalName
        primary_group_rid: Relative id of the user's primary group

    Returns:
        Dictionary of LDAP attribute names to values
    """
    account_control = UF_NORMAL_ACCOUNT
    if user.disabled:
        account_control |= UF_ACCOUNTDISABLE
    attributes = {
        'objectClass': list(USER_OBJECT_CLASSES),
        'sAMAccountName': user.username,
        'userPrincipalName': f"{user.username}@{domain}",
        'userAccountControl': str(account_control),
        'primaryGroupID': str(primary_group_rid),
        'displayName': user.display_name,
        'description': user.display_name,
    }

    optional = {
        'givenName': user.first_name,
        'initials': user.initials,
        'middleName': user.middle_name,
        'sn': user.surname,
        'scriptPath': user.script_path,
        'profilePath': user.profile_path,
        'homeDirectory': user.local_path,
        'homeDrive': user.local_drive,
    }
    for name, value in optional.items():
        if value is not None:
            attributes[name] = value

    if user.password is not None:
        attributes['unicodePwd'] = encode_password(user.password)

    if user.must_change_password:
        attributes['pwdLastSet'] = '0'

    if user.is_unix:
        posix = user.posix
        attributes.update({
            'uidNumber': str(posix.uid),
            'gidNumber': str(user.gid),
            'msSFU30Name': user.username,
            'msSFU30NisDomain': posix.nis_domain,
            'unixUserPassword': posix.unix_password,
        })
        posix_optional = {
            'loginShell': posix.shell,
            'unixHomeDirectory': posix.home_directory,
            'gecos': posix.gecos,
        }
        for name, value in posix_optional.items():
            if value is not None:
                attributes[name] = value
        for field, ldap_name in SHADOW_ATTRIBUTES.items():
            value = getattr(posix, field)
            if value is not None:
                attributes[ldap_name] = str(value)

    return attributes


def unix_member_attributes(users: List[Any]) -> Dict[str, List[str]]:
    """Build memberUid / msSFU30PosixMember values for UNIX group members."""
    unix_users = [user for user in users if user.is_unix]
    if not unix_users:
        return {}
    return {
        'memberUid': [user.username for user in unix_users],
        'msSFU30PosixMember': [user.distinguished_name for user in unix_users],
    }
