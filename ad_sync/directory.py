"""
The in-memory model of one Active Directory domain and its reconciliation.

``ActiveDirectory`` owns the containers of a directory root and the
identifier registry. ``load`` builds the model from the remote directory and
``sync`` creates any containers, groups and users that only exist locally.
Objects that were loaded are never updated or deleted remotely.
"""

import re
import logging
from typing import Dict, Any, List, Optional, Iterable, Set

from ad_sync.attributes import (
    DEFAULT_NIS_DOMAIN,
    DEFAULT_UNIX_PASSWORD,
    SHADOW_ATTRIBUTES,
    container_create_attributes,
    generate_password,
    group_create_attributes,
    group_entry_attributes,
    sid_to_rid,
    unix_member_attributes,
    user_create_attributes,
    user_entry_attributes,
)
from ad_sync.connector import DirectoryQueryError
from ad_sync.container import Container, normalize_container_name
from ad_sync.exceptions import InvariantViolation, DuplicateIdentifierError
from ad_sync.group import Group, PosixGroup
from ad_sync.registry import IdentityRegistry, UID, GID
from ad_sync.user import User, PosixAccount, _check_unix_main_group

logger = logging.getLogger(__name__)

GROUP_FILTER = '(objectClass=group)'
USER_FILTER = '(objectClass=user)'

DEFAULT_MIN_UID = 1000
DEFAULT_MIN_GID = 1000

USERS_CONTAINER = 'cn=Users'


class ReconcileReport:
    """
    Outcome of a load or sync run.

    Warnings are for objects that were skipped. Errors are for objects whose
    creation failed. Neither stops the run.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.counts: Dict[str, int] = {}
        self.warnings: List[str] = []
        self.errors: List[str] = []

    def count(self, name: str, amount: int = 1) -> None:
        self.counts[name] = self.counts.get(name, 0) + amount

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def error(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)

    @property
    def success(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'counts': dict(self.counts),
            'warnings': list(self.warnings),
            'errors': list(self.errors),
        }


class ActiveDirectory:
    """
    One Active Directory root and everything managed beneath it.

    A ``cn=Users`` container is always present because that is where Active
    Directory keeps the default primary group (Domain Users).
    """

    def __init__(self, root: str, min_uid: int = DEFAULT_MIN_UID, min_gid: int = DEFAULT_MIN_GID):
        """
        Args:
            root: Directory root, for example ``dc=example,dc=com``
            min_uid: UID returned by load_next_uid when no UID is in use
            min_gid: GID returned by load_next_gid when no GID is in use
        """
        if not root or not root.strip():
            raise InvariantViolation("Directory root is required")

        self.root = re.sub(r'\s+', '', root)
        self.domain = re.sub(r'dc=', '', self.root, flags=re.IGNORECASE).replace(',', '.').lower()
        self.min_uid = min_uid
        self.min_gid = min_gid
        self.registry = IdentityRegistry()
        self._containers: List[Container] = []
        self.cn_users = Container(USERS_CONTAINER, self)

    # Containers

    @property
    def containers(self) -> List[Container]:
        return list(self._containers)

    def find_container(self, name: str) -> Optional[Container]:
        wanted = normalize_container_name(name).lower()
        for container in self._containers:
            if container.name.lower() == wanted:
                return container
        return None

    def add_container(self, container: Container) -> None:
        """Register a container. Called by the Container constructor."""
        if container.directory is not self:
            raise InvariantViolation(f"Container {container.name} must be in the same directory")
        if not container.removed:
            raise InvariantViolation(f"Container {container.name} is already in the directory")

        existing = self.find_container(container.name)
        if existing is not None and existing is not container:
            raise InvariantViolation(f"Container {container.name} is already in the directory")

        self._containers.append(container)
        container._removed = False

    def remove_container(self, container: Container) -> bool:
        """
        Detach a container from the directory.

        Its users and groups stay in the container's lists but are no longer
        enumerated through the directory. ``cn=Users`` and containers holding
        other managed containers are never removed.

        Returns:
            True if the container was removed
        """
        if container.removed:
            return False

        if container is self.cn_users:
            logger.warning(f"Cannot remove {container.name}: it always exists")
            return False

        suffix = f",{container.name.lower()}"
        for other in self._containers:
            if other is not container and other.name.lower().endswith(suffix):
                logger.warning(f"Cannot remove {container.name}: it contains {other.name}")
                return False

        self._containers.remove(container)
        container._removed = True
        logger.debug(f"Removed container {container.name}")
        return True

    # Lookups

    @property
    def users(self) -> List[User]:
        return [user for container in self._containers for user in container.users]

    @property
    def groups(self) -> List[Group]:
        return [group for container in self._containers for group in container.groups]

    @property
    def removed_users(self) -> List[User]:
        return [user for container in self._containers for user in container.removed_users]

    @property
    def removed_groups(self) -> List[Group]:
        return [group for container in self._containers for group in container.removed_groups]

    def find_user_by_username(self, username: str) -> Optional[User]:
        wanted = username.lower()
        return next((user for user in self.users if user.username.lower() == wanted), None)

    def find_user_by_rid(self, rid: int) -> Optional[User]:
        return next((user for user in self.users if user.rid == rid), None)

    def find_user_by_uid(self, uid: int) -> Optional[User]:
        return next((user for user in self.users if user.is_unix and user.uid == uid), None)

    def find_user_by_dn(self, dn: str) -> Optional[User]:
        wanted = dn.lower()
        return next((user for user in self.users if user.distinguished_name.lower() == wanted), None)

    def find_group_by_name(self, name: str) -> Optional[Group]:
        wanted = name.lower()
        return next((group for group in self.groups if group.name.lower() == wanted), None)

    def find_group_by_rid(self, rid: int) -> Optional[Group]:
        return next((group for group in self.groups if group.rid == rid), None)

    def find_group_by_gid(self, gid: int) -> Optional[Group]:
        return next((group for group in self.groups if group.is_unix and group.gid == gid), None)

    def find_group_by_dn(self, dn: str) -> Optional[Group]:
        wanted = dn.lower()
        return next((group for group in self.groups if group.distinguished_name.lower() == wanted), None)

    # Windows / UNIX conversion
    #
    # The object keeps its identity, memberships and loaded state; only the
    # POSIX record is attached or detached. Like any other local edit of a
    # loaded object the change marks it modified but is not pushed by sync.

    def _check_convertible(self, obj, label: str) -> None:
        if obj.directory is not self:
            raise InvariantViolation(f"{label} must be in directory {self.root}")
        if obj.removed:
            raise InvariantViolation(f"{label} has been removed")

    def user_to_unix_user(self, user: User, posix: PosixAccount, connector) -> None:
        """
        Make a Windows user a UNIX user.

        The UID is checked against local reservations and every uidNumber
        under the root before anything changes.

        Args:
            user: Active Windows user of this directory
            posix: POSIX attributes; ``unix_main_group`` must be a UNIX group
            connector: DirectoryConnector used to read UIDs already in use

        Raises:
            InvariantViolation: If the user is removed, already a UNIX user or
                the UNIX main group is unusable
            DuplicateIdentifierError: If the UID is missing or in use
        """
        self._check_convertible(user, f"User {user.username}")
        if user.is_unix:
            raise InvariantViolation(f"User {user.username} is already a UNIX user")
        if posix.uid is None:
            raise DuplicateIdentifierError(UID, None)
        if self.registry.is_reserved(UID, posix.uid):
            raise DuplicateIdentifierError(UID, posix.uid)
        _check_unix_main_group(self, posix.unix_main_group)
        if posix.uid in self._collect_ids(connector, USER_FILTER, 'uidNumber'):
            raise DuplicateIdentifierError(UID, posix.uid)

        self.registry.reserve(UID, posix.uid)
        user.posix = posix
        if posix.gecos is None:
            posix.gecos = user.username

        group = posix.unix_main_group
        if group is not user.primary_group and group._attach_user(user):
            group._touch()
        user._touch()
        logger.info(f"Converted user {user.username} to a UNIX user (UID {posix.uid})")

    def unix_user_to_user(self, user: User, remove_unix_groups: bool = False) -> None:
        """
        Drop the POSIX attributes of a UNIX user and release its UID.

        Args:
            user: Active UNIX user of this directory
            remove_unix_groups: Also leave every UNIX group the user is an
                explicit member of. By default Windows memberships are kept.
        """
        self._check_convertible(user, f"User {user.username}")
        if not user.is_unix:
            raise InvariantViolation(f"User {user.username} is not a UNIX user")

        uid = user.uid
        self.registry.release(UID, uid)
        user.posix = None

        if remove_unix_groups:
            for group in user.groups:
                if group.is_unix and group._detach_user(user):
                    group._touch()
        user._touch()
        logger.info(f"Converted UNIX user {user.username} (UID {uid}) to a Windows user")

    def group_to_unix_group(self, group: Group, posix: PosixGroup, connector) -> None:
        """
        Make a Windows group a UNIX group.

        The GID is checked against local reservations and every gidNumber of
        a group under the root before anything changes.

        Raises:
            InvariantViolation: If the group is removed or already a UNIX group
            DuplicateIdentifierError: If the GID is missing or in use
        """
        self._check_convertible(group, f"Group {group.name}")
        if group.is_unix:
            raise InvariantViolation(f"Group {group.name} is already a UNIX group")
        if posix.gid is None:
            raise DuplicateIdentifierError(GID, None)
        if self.registry.is_reserved(GID, posix.gid):
            raise DuplicateIdentifierError(GID, posix.gid)
        if posix.gid in self._collect_ids(connector, GROUP_FILTER, 'gidNumber'):
            raise DuplicateIdentifierError(GID, posix.gid)

        self.registry.reserve(GID, posix.gid)
        group.posix = posix
        group._touch()
        logger.info(f"Converted group {group.name} to a UNIX group (GID {posix.gid})")

    def unix_group_to_group(self, group: Group, connector=None, remove_unix_users: bool = False) -> None:
        """
        Drop the POSIX attributes of a UNIX group and release its GID.

        Args:
            group: Active UNIX group of this directory
            connector: When given, users in the directory whose gidNumber is
                this group's GID also block the conversion
            remove_unix_users: Also drop the UNIX users among the group's
                explicit members. By default Windows memberships are kept.

        Raises:
            InvariantViolation: If the group is someone's UNIX main group
        """
        self._check_convertible(group, f"Group {group.name}")
        if not group.is_unix:
            raise InvariantViolation(f"Group {group.name} is not a UNIX group")

        gid = group.gid
        for user in self.users:
            if user.is_unix and user.unix_main_group is group:
                raise InvariantViolation(
                    f"Cannot convert group {group.name}: it is {user.username}'s UNIX main group"
                )
        if connector is not None:
            entries = connector.search(self.root, f"(gidNumber={gid})", scope='subtree') or []
            for entry in entries:
                if 'user' in [str(value).lower() for value in entry.get('objectClass')]:
                    raise InvariantViolation(
                        f"Cannot convert group {group.name}: it is the UNIX main group of {entry.dn}"
                    )

        self.registry.release(GID, gid)
        group.posix = None

        if remove_unix_users:
            for user in group.users:
                if user.is_unix and group._detach_user(user):
                    user._touch()
        group._touch()
        logger.info(f"Converted UNIX group {group.name} (GID {gid}) to a Windows group")

    # Load

    def load(self, connector) -> ReconcileReport:
        """
        Populate the model from the directory.

        Runs three phases in order: groups, users, then memberships. Objects
        that already exist locally (by name) are left alone, so load can be
        called again after adding containers. Only the objects created by this
        call are marked loaded.

        Args:
            connector: DirectoryConnector to read from

        Returns:
            ReconcileReport with counts and any skipped entries
        """
        logger.info(f"Loading directory {self.root}")
        report = ReconcileReport('load')

        loaded_groups = self._load_groups(connector, report)
        loaded_users = self._load_users(connector, report)
        self._load_memberships(connector, report)

        # Membership wiring above does not mark anything modified, so this
        # leaves every freshly loaded object unmodified.
        for obj in loaded_groups + loaded_users:
            obj.loaded()

        logger.info(f"Loaded {len(loaded_groups)} groups and {len(loaded_users)} users "
                    f"({len(report.warnings)} warnings, {len(report.errors)} errors)")
        return report

    def _search_container(self, connector, container: Container, search_filter: str,
                          report: ReconcileReport) -> List:
        try:
            entries = connector.search(container.distinguished_name, search_filter, scope='level')
        except DirectoryQueryError as e:
            report.error(f"Search of {container.distinguished_name} failed: {e}")
            return []

        if entries is None:
            logger.debug(f"Container {container.distinguished_name} is not in the directory")
            return []
        return entries

    def _load_groups(self, connector, report: ReconcileReport) -> List[Group]:
        loaded = []
        for container in self.containers:
            for entry in self._search_container(connector, container, GROUP_FILTER, report):
                try:
                    attributes = group_entry_attributes(entry)
                except ValueError as e:
                    report.warn(f"Not loading group entry {entry.dn}: {e}")
                    continue

                name = attributes['name']
                if self.find_group_by_name(name):
                    logger.debug(f"Not loading group {name}: already exists")
                    continue

                posix = None
                if attributes['gid'] is not None:
                    posix = PosixGroup(
                        gid=attributes['gid'],
                        nis_domain=attributes['nis_domain'] or DEFAULT_NIS_DOMAIN,
                        unix_password=attributes['unix_password'] or DEFAULT_UNIX_PASSWORD,
                    )

                try:
                    group = Group(name, container, group_type=attributes['type'],
                                  rid=attributes['rid'], posix=posix)
                except InvariantViolation as e:
                    report.warn(f"Not loading group {name}: {e}")
                    continue

                group.loaded()
                loaded.append(group)
                report.count('groups_loaded')
        return loaded

    def _load_users(self, connector, report: ReconcileReport) -> List[User]:
        loaded = []
        for container in self.containers:
            for entry in self._search_container(connector, container, USER_FILTER, report):
                try:
                    attributes = user_entry_attributes(entry)
                except ValueError as e:
                    report.warn(f"Not loading user entry {entry.dn}: {e}")
                    continue

                username = attributes['username']
                if self.find_user_by_username(username):
                    logger.debug(f"Not loading user {username}: already exists")
                    continue

                primary_group = None
                if attributes['primary_group_rid'] is not None:
                    primary_group = self.find_group_by_rid(attributes['primary_group_rid'])
                if primary_group is None:
                    report.warn(f"Windows primary group not found for: {username} ({entry.dn}), not loading")
                    continue

                posix = None
                if attributes['uid'] is not None and attributes['gid'] is not None:
                    unix_main_group = self.find_group_by_gid(attributes['gid'])
                    if unix_main_group is None:
                        report.warn(f"Main UNIX group could not be found for: {username} ({entry.dn}), not loading")
                        continue
                    posix = self._posix_account(attributes, unix_main_group)

                try:
                    user = User(username, container, primary_group, rid=attributes['rid'],
                                disabled=attributes['disabled'], posix=posix)
                except InvariantViolation as e:
                    report.warn(f"Not loading user {username}: {e}")
                    continue

                user._apply_directory_attributes(attributes)
                loaded.append(user)
                report.count('users_loaded')
        return loaded

    @staticmethod
    def _posix_account(attributes: Dict[str, Any], unix_main_group: Group) -> PosixAccount:
        posix = PosixAccount(
            uid=attributes['uid'],
            unix_main_group=unix_main_group,
            shell=attributes['shell'],
            home_directory=attributes['home_directory'],
            nis_domain=attributes['nis_domain'] or DEFAULT_NIS_DOMAIN,
            gecos=attributes['gecos'],
            unix_password=attributes['unix_password'] or DEFAULT_UNIX_PASSWORD,
        )
        for field in SHADOW_ATTRIBUTES:
            setattr(posix, field, attributes[field])
        return posix

    def _load_memberships(self, connector, report: ReconcileReport) -> None:
        for group in self.groups:
            try:
                entries = connector.search(group.distinguished_name, GROUP_FILTER, scope='base')
            except DirectoryQueryError as e:
                report.error(f"Reading members of {group.name} failed: {e}")
                continue

            # A group created locally but not yet synced has no entry.
            if not entries:
                logger.debug(f"Group {group.name} is not in the directory, skipping members")
                continue

            for member_dn in entries[0].get('member'):
                member_group = self.find_group_by_dn(member_dn)
                if member_group is not None:
                    if member_group is not group:
                        group._attach_group(member_group)
                        report.count('memberships_loaded')
                    continue

                member_user = self.find_user_by_dn(member_dn)
                if member_user is not None:
                    if member_user.primary_group is not group:
                        group._attach_user(member_user)
                        report.count('memberships_loaded')
                    continue

                logger.debug(f"Member {member_dn} of {group.name} is not managed, skipping")

    # Sync

    def sync(self, connector) -> ReconcileReport:
        """
        Create everything that exists locally but not in the directory.

        Containers are created first, then groups, then users, then the
        memberships that involve a newly created object. Objects already in
        the directory are reported and skipped. A failure for one object is
        reported and the run continues.

        Args:
            connector: DirectoryConnector to write to

        Returns:
            ReconcileReport with counts, warnings and errors
        """
        logger.info(f"Synchronizing directory {self.root}")
        report = ReconcileReport('sync')

        for container in self.containers:
            self._create_container(connector, container, report)

        created: Set[int] = set()

        for group in self.groups:
            if not group.is_loaded and self._create_group(connector, group, report):
                created.add(id(group))

        for user in self.users:
            if not user.is_loaded and self._create_user(connector, user, report):
                created.add(id(user))

        if created:
            self._create_memberships(connector, created, report)

        logger.info(f"Sync finished: {report.counts} "
                    f"({len(report.warnings)} warnings, {len(report.errors)} errors)")
        return report

    def _create_container(self, connector, container: Container, report: ReconcileReport) -> None:
        distinguished_name = self.root
        for component in reversed(container.name.split(',')):
            distinguished_name = f"{component},{distinguished_name}"
            attributes = container_create_attributes(component)
            if attributes is None:
                report.error(f"SYNC ERROR: {container.name} ({component}) - unknown container type")
                return

            object_class = attributes['objectClass'][-1]
            try:
                if connector.exists_at(distinguished_name, f"(objectClass={object_class})"):
                    logger.debug(f"{distinguished_name} found - not creating")
                    continue

                logger.debug(f"{distinguished_name} not found - creating")
                result = connector.create(distinguished_name, attributes)
            except DirectoryQueryError as e:
                report.error(f"Creating container {distinguished_name} failed: {e}")
                return

            if not result.success:
                report.error(f"Creating container {distinguished_name} failed: "
                             f"LDAP error {result.code}: {result.message}")
                return
            report.count('containers_created')

    def _fetch_rid(self, connector, distinguished_name: str, search_filter: str) -> Optional[int]:
        entries = connector.search(distinguished_name, search_filter, scope='base')
        if not entries:
            return None
        sid = entries[0].first('objectSid')
        if sid is None:
            return None
        return sid_to_rid(sid)

    def _record_rid(self, connector, obj, search_filter: str, label: str, report: ReconcileReport) -> None:
        try:
            rid = self._fetch_rid(connector, obj.distinguished_name, search_filter)
        except (DirectoryQueryError, ValueError) as e:
            report.error(f"{label} was created but its RID could not be read: {e}")
            return

        if rid is None:
            report.error(f"{label} was created but its RID could not be read")
            return

        try:
            obj._assign_rid(rid)
        except InvariantViolation as e:
            report.error(f"{label} was created but its RID is unusable: {e}")

    def _create_group(self, connector, group: Group, report: ReconcileReport) -> bool:
        try:
            if connector.exists_at(group.distinguished_name, GROUP_FILTER):
                report.warn(f"Group {group.name} already exists, not created")
                return False

            logger.debug(f"Creating group {group.name}")
            result = connector.create(group.distinguished_name, group_create_attributes(group))
        except DirectoryQueryError as e:
            report.error(f"Creating group {group.name} failed: {e}")
            return False

        if not result.success:
            report.error(f"Creating group {group.name} failed: LDAP error {result.code}: {result.message}")
            return False

        self._record_rid(connector, group, GROUP_FILTER, f"Group {group.name}", report)
        group.loaded()
        report.count('groups_created')
        logger.info(f"Created group {group.name}")
        return True

    def _primary_group_rid(self, connector, user: User) -> Optional[int]:
        primary_group = user.primary_group
        if primary_group.is_loaded and primary_group.rid is not None:
            return primary_group.rid
        return self._fetch_rid(connector, primary_group.distinguished_name, GROUP_FILTER)

    def _create_user(self, connector, user: User, report: ReconcileReport) -> bool:
        try:
            if connector.exists_at(user.distinguished_name, USER_FILTER):
                report.warn(f"User {user.username} already exists, not created")
                return False

            primary_group_rid = self._primary_group_rid(connector, user)
        except (DirectoryQueryError, ValueError) as e:
            report.error(f"Creating user {user.username} failed: {e}")
            return False

        if primary_group_rid is None:
            report.error(f"SYNC ERROR: RID of primary group {user.primary_group.name} "
                         f"could not be found, not creating {user.username}")
            return False

        if user.password is None:
            user._password = generate_password()
            logger.debug(f"Generated password for {user.username}")

        try:
            logger.debug(f"Creating user {user.username}")
            result = connector.create(user.distinguished_name,
                                      user_create_attributes(user, self.domain, primary_group_rid))
        except DirectoryQueryError as e:
            report.error(f"Creating user {user.username} failed: {e}")
            return False

        if not result.success:
            report.error(f"Creating user {user.username} failed: LDAP error {result.code}: {result.message}")
            return False

        # The password has been set; a later sync must not try again.
        user._password = None
        self._record_rid(connector, user, USER_FILTER, f"User {user.username}", report)
        user.loaded()
        report.count('users_created')
        logger.info(f"Created user {user.username}")
        return True

    def _create_memberships(self, connector, created: Set[int], report: ReconcileReport) -> None:
        for group in self.groups:
            if not group.is_loaded:
                continue

            group_created = id(group) in created
            new_users = [user for user in group.users
                         if not user.removed and user.is_loaded
                         and (group_created or id(user) in created)]
            new_groups = [member for member in group.groups
                          if not member.removed and member.is_loaded
                          and (group_created or id(member) in created)]
            if not new_users and not new_groups:
                continue

            values = {'member': [member.distinguished_name for member in new_users + new_groups]}
            if group.is_unix:
                # UNIX main group membership comes from the user's gidNumber.
                unix_members = [user for user in new_users if user.unix_main_group is not group]
                values.update(unix_member_attributes(unix_members))

            try:
                result = connector.add_values(group.distinguished_name, values)
            except DirectoryQueryError as e:
                report.error(f"Adding members to {group.name} failed: {e}")
                continue

            if not result.success:
                report.error(f"Adding members to {group.name} failed: LDAP error {result.code}: {result.message}")
                continue
            report.count('memberships_created', len(values['member']))

    # Next free POSIX ids

    def load_next_uid(self, connector) -> int:
        """
        Return the next free UID.

        Considers UIDs found anywhere under the root plus UIDs of local UNIX
        users that are not in the directory yet.
        """
        remote = self._collect_ids(connector, USER_FILTER, 'uidNumber')
        return self._next_free(remote | set(self.registry.values(UID)), self.min_uid)

    def load_next_gid(self, connector) -> int:
        """Return the next free GID. See load_next_uid."""
        remote = self._collect_ids(connector, GROUP_FILTER, 'gidNumber')
        return self._next_free(remote | set(self.registry.values(GID)), self.min_gid)

    def _collect_ids(self, connector, search_filter: str, attribute: str) -> Set[int]:
        ids = set()
        for entry in connector.search(self.root, search_filter, scope='subtree') or []:
            value = entry.first(attribute)
            if value is None:
                continue
            try:
                ids.add(int(value))
            except ValueError:
                logger.debug(f"Ignoring non-numeric {attribute} on {entry.dn}: {value}")
        return ids

    @staticmethod
    def _next_free(ids: Iterable[int], minimum: int) -> int:
        """Walk the run of consecutive ids starting at the lowest one."""
        last = None
        for value in sorted(ids):
            if last is None or value == last + 1:
                last = value
            else:
                break
        return minimum if last is None else last + 1

    def __repr__(self):
        return f"ActiveDirectory({self.root!r})"
