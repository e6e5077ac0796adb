"""
Groups and their optional POSIX extension.

A group's explicit user membership is mirrored on the user side: whenever a
user is added to ``group.users`` the group is added to ``user.groups`` in the
same step. Group-in-group membership is stored on the containing group only.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ad_sync.attributes import (
    GROUP_GLOBAL_SECURITY,
    DEFAULT_NIS_DOMAIN,
    DEFAULT_UNIX_PASSWORD,
    group_type_to_str,
    is_valid_group_type,
)
from ad_sync.entity import DirectoryObject
from ad_sync.exceptions import InvariantViolation, DuplicateIdentifierError
from ad_sync.registry import RID, GID

logger = logging.getLogger(__name__)


@dataclass
class PosixGroup:
    """POSIX attributes of a UNIX enabled group."""
    gid: int
    nis_domain: str = DEFAULT_NIS_DOMAIN
    unix_password: str = DEFAULT_UNIX_PASSWORD


class Group(DirectoryObject):
    """
    A security or distribution group.

    Passing ``posix`` makes it a UNIX group with a directory-unique GID.
    """

    def __init__(self, name: str, container, group_type: int = GROUP_GLOBAL_SECURITY,
                 rid: Optional[int] = None, posix: Optional[PosixGroup] = None):
        """
        Create a group and add it to its container.

        Args:
            name: Group name (sAMAccountName and cn)
            container: Owning Container
            group_type: One of the GROUP_* constants
            rid: Relative id, when known
            posix: POSIX attributes for a UNIX group

        Raises:
            InvariantViolation: If the name is taken or the type is unknown
            DuplicateIdentifierError: If the RID or GID is already in use
        """
        if not name or not name.strip():
            raise InvariantViolation("Group name is required")
        name = name.strip()

        directory = container.directory
        registry = directory.registry

        if registry.is_reserved(RID, rid):
            raise DuplicateIdentifierError(RID, rid)

        if directory.find_group_by_name(name):
            raise InvariantViolation(f"Group {name} is already in the directory")

        if not is_valid_group_type(group_type):
            raise InvariantViolation(f"Unknown group type {group_type} for group {name}")

        if posix is not None:
            if posix.gid is None:
                raise DuplicateIdentifierError(GID, None)
            if registry.is_reserved(GID, posix.gid):
                raise DuplicateIdentifierError(GID, posix.gid)

        super().__init__(container, rid)
        self.name = name
        self.type = group_type
        self.posix = posix
        self._users = []
        self._groups = []

        container.add_group(self)

    @property
    def distinguished_name(self) -> str:
        return f"cn={self.name},{self.container.distinguished_name}"

    @property
    def is_unix(self) -> bool:
        return self.posix is not None

    @property
    def gid(self) -> Optional[int]:
        return self.posix.gid if self.posix else None

    @property
    def users(self) -> List:
        return list(self._users)

    @property
    def groups(self) -> List['Group']:
        return list(self._groups)

    def _check_member_user(self, user):
        if self.removed:
            raise InvariantViolation(f"Group {self.name} has been removed")
        if user.removed:
            raise InvariantViolation(f"User {user.username} has been removed")
        if user.directory is not self.directory:
            raise InvariantViolation(f"User {user.username} must be in the same directory")

    def add_user(self, user) -> None:
        """
        Make ``user`` an explicit member of this group.

        Raises:
            InvariantViolation: If this is the user's primary group, or either
                side is removed or in a different directory
        """
        self._check_member_user(user)
        if user.primary_group is self:
            raise InvariantViolation(f"Group {self.name} is already {user.username}'s primary group")

        if self._attach_user(user):
            self._touch()
            user._touch()

    def remove_user(self, user) -> None:
        """
        Remove ``user`` from the explicit member list.

        A UNIX user cannot leave its UNIX main group unless that group is also
        its primary group.
        """
        if (user.is_unix and not user.removed and user.unix_main_group is self
                and user.primary_group is not self):
            raise InvariantViolation(
                f"{user.username} cannot be removed from UNIX main group {self.name}"
            )

        if self._detach_user(user):
            self._touch()
            user._touch()

    def add_group(self, group: 'Group') -> None:
        """
        Make ``group`` a member of this group.

        Raises:
            InvariantViolation: On self membership, a removed group or a group
                from another directory
        """
        if group is self:
            raise InvariantViolation(f"Group {self.name} cannot be a member of itself")
        if group.removed:
            raise InvariantViolation(f"Group {group.name} has been removed")
        if group.directory is not self.directory:
            raise InvariantViolation(f"Group {group.name} must be in the same directory")

        if self._attach_group(group):
            self._touch()

    def remove_group(self, group: 'Group') -> None:
        if self._detach_group(group):
            self._touch()

    def is_member_of(self, group: 'Group') -> bool:
        """True if this group is an explicit member of ``group``."""
        return self in group._groups

    def update_posix(self, **fields) -> None:
        """
        Change POSIX attributes (``nis_domain`` or ``unix_password``).

        Raises:
            InvariantViolation: If the group is not a UNIX group, or on an
                attempt to change the GID or an unknown field
        """
        if not self.is_unix:
            raise InvariantViolation(f"Group {self.name} is not a UNIX group")

        for field, value in fields.items():
            if field == 'gid':
                raise InvariantViolation(f"The GID of group {self.name} cannot be changed")
            if field not in ('nis_domain', 'unix_password'):
                raise InvariantViolation(f"Unknown POSIX group attribute: {field}")
            setattr(self.posix, field, value)

        if fields:
            self._touch()

    # Membership wiring without modification tracking. Used by the public
    # methods above and by directory load.

    def _attach_user(self, user) -> bool:
        changed = False
        if user not in self._users:
            self._users.append(user)
            changed = True
        if self not in user._groups:
            user._groups.append(self)
            changed = True
        return changed

    def _detach_user(self, user) -> bool:
        changed = False
        if user in self._users:
            self._users.remove(user)
            changed = True
        if self in user._groups:
            user._groups.remove(self)
            changed = True
        return changed

    def _attach_group(self, group: 'Group') -> bool:
        if group in self._groups:
            return False
        self._groups.append(group)
        return True

    def _detach_group(self, group: 'Group') -> bool:
        if group not in self._groups:
            return False
        self._groups.remove(group)
        return True

    def __repr__(self):
        kind = "UNIXGroup" if self.is_unix else "Group"
        gid = f", GID {self.gid}" if self.is_unix else ""
        return f"{kind}[({group_type_to_str(self.type)}, RID {self.rid}{gid}) {self.distinguished_name}]"
