"""
Containers and organizational units holding users and groups.
"""

import re
import logging

from ad_sync.exceptions import InvariantViolation
from ad_sync.registry import RID, UID, GID
from ad_sync.user import _check_primary_group, _check_unix_main_group

logger = logging.getLogger(__name__)

_COMMA_SPACING = re.compile(r',\s+')
# A cn= container cannot hold an organizational unit.
_OU_BELOW_CN = re.compile(r'ou=.*cn=', re.IGNORECASE)


def normalize_container_name(name: str) -> str:
    """Collapse spacing after commas and strip surrounding whitespace."""
    return _COMMA_SPACING.sub(',', name).strip()


class Container:
    """
    A container or organizational unit in the directory.

    The name is relative to the directory root, for example ``ou=People`` or
    ``ou=Staff,ou=People``. Users and groups belong to exactly one container
    and only become part of the directory once their container accepts them.
    Objects the container has released stay in ``removed_users`` and
    ``removed_groups`` until they are added back.
    """

    def __init__(self, name: str, directory):
        """
        Create a container and register it with its directory.

        Args:
            name: Container path relative to the directory root
            directory: Owning ActiveDirectory

        Raises:
            InvariantViolation: If the name is empty, invalid or already in use
        """
        if not name or not name.strip():
            raise InvariantViolation("Container name is required")

        name = normalize_container_name(name)

        if _OU_BELOW_CN.search(name):
            raise InvariantViolation(f"Container {name}: cn containers cannot contain ou objects")

        if directory.find_container(name):
            raise InvariantViolation(f"Container {name} is already in the directory")

        self.name = name
        self.directory = directory
        self.distinguished_name = f"{name},{directory.root}"
        self.users = []
        self.groups = []
        self.removed_users = []
        self.removed_groups = []
        self._removed = True

        directory.add_container(self)

    @property
    def removed(self) -> bool:
        return self._removed

    def _check_owner(self, obj, kind: str):
        if obj.container is not self:
            raise InvariantViolation(f"{kind} must be in container {self.name}")

    def add_user(self, user) -> None:
        """
        Accept a user into this container.

        Reserves the user's RID and, for UNIX users, the UID. Both reservations
        succeed or neither is kept.

        Raises:
            InvariantViolation: If the user is already active, belongs to another
                container, its username is taken or its primary or UNIX main
                group is no longer usable
            DuplicateIdentifierError: If the RID or UID is already reserved
        """
        if not user.removed:
            raise InvariantViolation(f"User {user.username} is already in the directory")
        self._check_owner(user, "User")
        if self._removed:
            raise InvariantViolation(f"Container {self.name} has been removed")

        existing = self.directory.find_user_by_username(user.username)
        if existing is not None and existing is not user:
            raise InvariantViolation(f"User {user.username} is already in the directory")

        _check_primary_group(self.directory, user.primary_group)
        if user.is_unix:
            _check_unix_main_group(self.directory, user.unix_main_group)

        registry = self.directory.registry
        registry.reserve(RID, user.rid)
        if user.is_unix:
            try:
                registry.reserve(UID, user.uid)
            except InvariantViolation:
                registry.release(RID, user.rid)
                raise

        if user not in self.users:
            self.users.append(user)
        if user in self.removed_users:
            self.removed_users.remove(user)
        user._removed = False
        logger.debug(f"Added user {user.username} to {self.name}")

    def remove_user(self, user) -> None:
        """
        Detach a user and release its identifiers.

        Group memberships are left in place.
        """
        self._check_owner(user, "User")
        if user.removed:
            return

        if user in self.users:
            self.users.remove(user)
        self.removed_users.append(user)

        registry = self.directory.registry
        registry.release(RID, user.rid)
        if user.is_unix:
            registry.release(UID, user.uid)

        user._removed = True
        logger.debug(f"Removed user {user.username} from {self.name}")

    def add_group(self, group) -> None:
        """
        Accept a group into this container.

        Reserves the group's RID and, for UNIX groups, the GID.

        Raises:
            InvariantViolation: If the group is already active, belongs to
                another container or its name is taken
            DuplicateIdentifierError: If the RID or GID is already reserved
        """
        if not group.removed:
            raise InvariantViolation(f"Group {group.name} is already in the directory")
        self._check_owner(group, "Group")
        if self._removed:
            raise InvariantViolation(f"Container {self.name} has been removed")

        existing = self.directory.find_group_by_name(group.name)
        if existing is not None and existing is not group:
            raise InvariantViolation(f"Group {group.name} is already in the directory")

        registry = self.directory.registry
        registry.reserve(RID, group.rid)
        if group.is_unix:
            try:
                registry.reserve(GID, group.gid)
            except InvariantViolation:
                registry.release(RID, group.rid)
                raise

        if group not in self.groups:
            self.groups.append(group)
        if group in self.removed_groups:
            self.removed_groups.remove(group)
        group._removed = False
        logger.debug(f"Added group {group.name} to {self.name}")

    def remove_group(self, group) -> None:
        """
        Detach a group, release its identifiers and drop its memberships.

        Raises:
            InvariantViolation: If the group is still a user's primary group or
                UNIX main group. Nothing is changed in that case.
        """
        self._check_owner(group, "Group")
        if group.removed:
            return

        for user in self.directory.users:
            if user.primary_group is group:
                raise InvariantViolation(
                    f"Cannot remove group {group.name}: it is {user.username}'s primary group"
                )
            if user.is_unix and user.unix_main_group is group:
                raise InvariantViolation(
                    f"Cannot remove group {group.name}: it is {user.username}'s UNIX main group"
                )

        if group in self.groups:
            self.groups.remove(group)
        self.removed_groups.append(group)

        registry = self.directory.registry
        registry.release(RID, group.rid)
        if group.is_unix:
            registry.release(GID, group.gid)

        for parent in self.directory.groups:
            parent._detach_group(group)
        for user in list(group.users):
            group._detach_user(user)

        group._removed = True
        logger.debug(f"Removed group {group.name} from {self.name}")

    def __repr__(self):
        return f"Container({self.distinguished_name!r})"
