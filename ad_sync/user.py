"""
User accounts and their optional POSIX extension.

A user always has a primary group. Membership in that group is implicit (it
comes from primaryGroupID in the directory) so the primary group never appears
in ``user.groups``. UNIX users additionally carry a PosixAccount record whose
UNIX main group they are an explicit member of, unless that group is also
their primary group.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ad_sync.attributes import PRIMARY_GROUP_TYPES, DEFAULT_NIS_DOMAIN, DEFAULT_UNIX_PASSWORD, group_type_to_str
from ad_sync.entity import DirectoryObject
from ad_sync.exceptions import InvariantViolation, DuplicateIdentifierError
from ad_sync.registry import RID, UID

logger = logging.getLogger(__name__)

POSIX_ACCOUNT_FIELDS = (
    'shell', 'home_directory', 'nis_domain', 'gecos', 'unix_password',
    'shadow_expire', 'shadow_flag', 'shadow_inactive', 'shadow_last_change',
    'shadow_max', 'shadow_min', 'shadow_warning',
)


@dataclass
class PosixAccount:
    """POSIX attributes of a UNIX enabled user account."""
    uid: int
    unix_main_group: object
    shell: Optional[str] = None
    home_directory: Optional[str] = None
    nis_domain: str = DEFAULT_NIS_DOMAIN
    gecos: Optional[str] = None
    unix_password: str = DEFAULT_UNIX_PASSWORD
    shadow_expire: Optional[int] = None
    shadow_flag: Optional[int] = None
    shadow_inactive: Optional[int] = None
    shadow_last_change: Optional[int] = None
    shadow_max: Optional[int] = None
    shadow_min: Optional[int] = None
    shadow_warning: Optional[int] = None


def _check_primary_group(user_directory, group) -> None:
    if group is None:
        raise InvariantViolation("A primary group is required")
    if group.removed:
        raise InvariantViolation(f"Primary group {group.name} has been removed")
    if group.directory is not user_directory:
        raise InvariantViolation(f"Primary group {group.name} must be in the same directory")
    if group.type not in PRIMARY_GROUP_TYPES:
        raise InvariantViolation(
            f"Primary group {group.name} must be GROUP_GLOBAL_SECURITY or GROUP_UNIVERSAL_SECURITY, "
            f"not {group_type_to_str(group.type)}"
        )


def _check_unix_main_group(user_directory, group) -> None:
    if group is None:
        raise InvariantViolation("A UNIX main group is required")
    if group.removed:
        raise InvariantViolation(f"UNIX main group {group.name} has been removed")
    if not group.is_unix:
        raise InvariantViolation(f"UNIX main group {group.name} must be a UNIX group")
    if group.directory is not user_directory:
        raise InvariantViolation(f"UNIX main group {group.name} must be in the same directory")


class User(DirectoryObject):
    """A Windows user account, optionally UNIX enabled through ``posix``."""

    def __init__(self, username: str, container, primary_group, rid: Optional[int] = None,
                 disabled: bool = False, posix: Optional[PosixAccount] = None):
        """
        Create a user and add it to its container.

        Everything is validated before the container is touched, so a failed
        construction leaves the directory unchanged.

        Args:
            username: Account name (sAMAccountName)
            container: Owning Container
            primary_group: Global or universal security group
            rid: Relative id, when known
            disabled: Create the account disabled
            posix: POSIX attributes for a UNIX user

        Raises:
            InvariantViolation: If the username is taken or a group is invalid
            DuplicateIdentifierError: If the RID or UID is already in use
        """
        if not username or not username.strip():
            raise InvariantViolation("Username is required")
        username = username.strip()

        directory = container.directory
        registry = directory.registry

        if registry.is_reserved(RID, rid):
            raise DuplicateIdentifierError(RID, rid)

        if directory.find_user_by_username(username):
            raise InvariantViolation(f"User {username} is already in the directory")

        _check_primary_group(directory, primary_group)

        if posix is not None:
            if posix.uid is None:
                raise DuplicateIdentifierError(UID, None)
            if registry.is_reserved(UID, posix.uid):
                raise DuplicateIdentifierError(UID, posix.uid)
            _check_unix_main_group(directory, posix.unix_main_group)

        super().__init__(container, rid)
        self.username = username
        self.posix = posix
        self._primary_group = primary_group
        self._groups = []
        self._disabled = disabled
        self._distinguished_name = f"cn={username},{container.distinguished_name}"
        self._first_name = username
        self._initials = None
        self._middle_name = None
        self._surname = None
        self._script_path = None
        self._profile_path = None
        self._local_path = None
        self._local_drive = None
        self._password = None
        self._must_change_password = False

        container.add_user(self)

        if posix is not None:
            if posix.gecos is None:
                posix.gecos = username
            if posix.unix_main_group is not primary_group:
                posix.unix_main_group._attach_user(self)

    # Identity

    @property
    def common_name(self) -> str:
        return self.username

    @property
    def distinguished_name(self) -> str:
        return self._distinguished_name

    @distinguished_name.setter
    def distinguished_name(self, value: str):
        if self.is_loaded:
            raise InvariantViolation("The distinguished name can only be set on new user accounts")
        self._distinguished_name = value

    @property
    def is_unix(self) -> bool:
        return self.posix is not None

    @property
    def uid(self) -> Optional[int]:
        return self.posix.uid if self.posix else None

    @property
    def gid(self) -> Optional[int]:
        return self.posix.unix_main_group.gid if self.posix else None

    @property
    def unix_main_group(self):
        return self.posix.unix_main_group if self.posix else None

    # Names

    @property
    def first_name(self) -> Optional[str]:
        return self._first_name

    @first_name.setter
    def first_name(self, value: Optional[str]):
        self._first_name = value
        self._touch()

    @property
    def initials(self) -> Optional[str]:
        return self._initials

    @initials.setter
    def initials(self, value: Optional[str]):
        self._initials = value
        self._touch()

    @property
    def middle_name(self) -> Optional[str]:
        return self._middle_name

    @middle_name.setter
    def middle_name(self, value: Optional[str]):
        self._middle_name = value
        self._touch()

    @property
    def surname(self) -> Optional[str]:
        return self._surname

    @surname.setter
    def surname(self, value: Optional[str]):
        self._surname = value
        self._touch()

    @property
    def display_name(self) -> str:
        """First name, initials and surname, falling back to the username."""
        parts = []
        if self._first_name:
            parts.append(self._first_name)
        if self._initials:
            parts.append(f"{self._initials}.")
        if self._surname:
            parts.append(self._surname)
        return ' '.join(parts) or self.username

    # Profile

    @property
    def script_path(self) -> Optional[str]:
        return self._script_path

    @script_path.setter
    def script_path(self, value: Optional[str]):
        self._script_path = value
        self._touch()

    @property
    def profile_path(self) -> Optional[str]:
        return self._profile_path

    @profile_path.setter
    def profile_path(self, value: Optional[str]):
        self._profile_path = value
        self._touch()

    @property
    def local_path(self) -> Optional[str]:
        return self._local_path

    @local_path.setter
    def local_path(self, value: Optional[str]):
        # A local home folder and a connected drive are mutually exclusive.
        self._local_path = value
        self._local_drive = None
        self._touch()

    @property
    def local_drive(self) -> Optional[str]:
        return self._local_drive

    def connect_drive_to(self, drive: str, path: str) -> None:
        """Map ``drive`` (for example ``Z:``) to the network home folder ``path``."""
        self._local_drive = drive
        self._local_path = path
        self._touch()

    # Account state

    @property
    def disabled(self) -> bool:
        return self._disabled

    def disable(self) -> None:
        if not self._disabled:
            self._disabled = True
            self._touch()

    def enable(self) -> None:
        if self._disabled:
            self._disabled = False
            self._touch()

    @property
    def password(self) -> Optional[str]:
        """Password to set on the next sync, or None."""
        return self._password

    @password.setter
    def password(self, value: Optional[str]):
        self._password = value
        self._touch()

    @property
    def must_change_password(self) -> bool:
        return self._must_change_password

    def force_change_password(self) -> None:
        self._must_change_password = True
        self._touch()

    def unset_change_password(self) -> None:
        self._must_change_password = False
        self._touch()

    # Groups

    @property
    def primary_group(self):
        return self._primary_group

    @property
    def groups(self) -> List:
        return list(self._groups)

    def set_primary_group(self, group) -> None:
        """
        Change the primary group.

        The new primary group is dropped from the explicit membership list and
        the old primary group becomes an explicit membership, as Active
        Directory does.

        Raises:
            InvariantViolation: If the group is removed, in another directory
                or not a global or universal security group
        """
        if group is self._primary_group:
            return

        _check_primary_group(self.directory, group)

        old_group = self._primary_group
        self._primary_group = group
        group._detach_user(self)
        if not old_group.removed:
            old_group._attach_user(self)
            old_group._touch()
        group._touch()
        self._touch()

    def add_group(self, group) -> None:
        """Make this user an explicit member of ``group``."""
        group.add_user(self)

    def remove_group(self, group) -> None:
        """Drop the explicit membership in ``group``."""
        group.remove_user(self)

    def is_member_of(self, group) -> bool:
        """True for the primary group and every explicit membership."""
        return group is self._primary_group or group in self._groups

    # POSIX

    def set_unix_main_group(self, group) -> None:
        """
        Change the UNIX main group (and with it the GID).

        The user joins the new group explicitly unless it is the primary group.
        Membership in the previous UNIX main group is kept.
        """
        if not self.is_unix:
            raise InvariantViolation(f"User {self.username} is not a UNIX user")

        _check_unix_main_group(self.directory, group)

        self.posix.unix_main_group = group
        if group is not self._primary_group and group._attach_user(self):
            group._touch()
        self._touch()

    def update_posix(self, **fields) -> None:
        """
        Change POSIX attributes such as ``shell`` or ``shadow_max``.

        Raises:
            InvariantViolation: If the user is not a UNIX user, or on an
                attempt to change the UID or an unknown field
        """
        if not self.is_unix:
            raise InvariantViolation(f"User {self.username} is not a UNIX user")

        for field, value in fields.items():
            if field == 'uid':
                raise InvariantViolation(f"The UID of user {self.username} cannot be changed")
            if field == 'unix_main_group':
                raise InvariantViolation("Use set_unix_main_group() to change the UNIX main group")
            if field not in POSIX_ACCOUNT_FIELDS:
                raise InvariantViolation(f"Unknown POSIX account attribute: {field}")
            setattr(self.posix, field, value)

        if fields:
            self._touch()

    def _apply_directory_attributes(self, attributes: dict) -> None:
        """Copy optional attributes read from a directory entry onto the user."""
        if attributes.get('distinguished_name'):
            self._distinguished_name = attributes['distinguished_name']

        for field in ('first_name', 'initials', 'middle_name', 'surname', 'script_path', 'profile_path'):
            if attributes.get(field) is not None:
                setattr(self, f"_{field}", attributes[field])

        if attributes.get('local_path') is not None:
            self._local_path = attributes['local_path']
            self._local_drive = attributes.get('local_drive')

        self._must_change_password = bool(attributes.get('must_change_password'))

    def __repr__(self):
        status = "USER_DISABLED" if self._disabled else "USER_ENABLED"
        kind = "UNIXUser" if self.is_unix else "User"
        ids = f"RID {self.rid}"
        if self.is_unix:
            ids += f", UID {self.uid}, GID {self.gid}"
        return f"{kind}[({status}, {ids}) {self.username} {self._distinguished_name}]"
