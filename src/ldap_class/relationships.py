"""This module resolves group and user relationships.

POSIX directories keep membership as values that point back at users
(``gidNumber`` on the user, ``memberUid`` on the group), so lookups are reverse
filter searches. Active Directory keeps forward DN lists (``member``,
``memberOf``) and a primary group RID on the user, each resolved entry by entry.

Results are cached on the entity they were computed for until ``invalidate`` is
called for it.
"""
from typing import Any, Callable, TYPE_CHECKING
from loguru import logger
from ldap_class.entry import normalize_values
from ldap_class.exceptions import AlreadyMember, NotAMember, ValidationError
from ldap_class.schema import EntityKind, SchemaVariant
from ldap_class.utils.filters import eq, or_, same_dn
from ldap_class.utils.utilities import group_sid

if TYPE_CHECKING:  # pragma: no cover
    from ldap_class.entity import Entity
    from ldap_class.session import DirectorySession


class RelationshipResolver:
    """Lazily fetch and cache membership for the entities of one session."""

    def __init__(self, session: "DirectorySession") -> None:
        """Initialization of the class."""
        self.session = session
        self._tracked: list["Entity"] = []

    # -- cache ------------------------------------------------------------------

    def _cached(self, entity: "Entity", key: str, loader: Callable[[], Any]) -> Any:
        if key in entity.relation_cache:
            logger.debug(f"{entity}: {key} served from cache")
        else:
            entity.relation_cache[key] = loader()
            if not any(tracked is entity for tracked in self._tracked):
                self._tracked.append(entity)
        value = entity.relation_cache[key]
        return list(value) if isinstance(value, list) else value

    def invalidate(self, entity: "Entity") -> None:
        """Forget the relationships cached on ``entity``."""
        if entity.relation_cache:
            logger.debug(f"{entity}: relationship cache invalidated")
        entity.relation_cache.clear()

    def clear(self) -> None:
        """Forget every relationship cached through this resolver."""
        for entity in self._tracked:
            entity.relation_cache.clear()
        self._tracked = []

    # -- helpers ----------------------------------------------------------------

    def _model(self, kind: EntityKind, variant: SchemaVariant) -> Any:
        return self.session.model(kind, variant)

    @staticmethod
    def _check_kind(entity: "Entity", kind: EntityKind) -> None:
        if entity.kind is not kind:
            raise ValidationError(f"{entity!r} is not a {kind.value}")

    def _read_by_dn(self, kind: EntityKind, variant: SchemaVariant, dns: list[str]) -> list[Any]:
        """Resolve a forward DN list one entry at a time.

        Entries of another type (nested groups, contacts) are skipped.
        """
        model = self._model(kind, variant)
        found = []
        for distinguished_name in dns:
            entity = model(self.session)
            if entity.read("distinguishedName", distinguished_name) is None:
                logger.debug(f"{distinguished_name} is not a {kind.value}, skipping")
                continue
            found.append(entity)
        return found

    # -- group side ---------------------------------------------------------------

    def primary_members(self, group: "Entity") -> list[Any]:
        """Users whose primary group is ``group``.

        Examples
        --------
        >>> session.resolver.primary_members(eng)
        [<PosixUser uid=alice>]
        """
        self._check_kind(group, EntityKind.GROUP)
        return self._cached(group, "primary_members", lambda: self._primary_members(group))

    def _primary_members(self, group: "Entity") -> list[Any]:
        user_model = self._model(EntityKind.USER, group.variant)
        if group.variant is SchemaVariant.POSIX:
            gid = group.get("gidNumber")
            if gid is None:
                return []
            return user_model.find(self.session, eq("gidNumber", gid))
        token = group.get("primaryGroupToken")
        if token is None:
            return []
        return user_model.find(self.session, eq("primaryGroupID", token))

    def secondary_members(self, group: "Entity") -> list[Any]:
        """Users listed in the membership attribute of ``group``."""
        self._check_kind(group, EntityKind.GROUP)
        return self._cached(
            group, "secondary_members", lambda: self._secondary_members(group)
        )

    def _secondary_members(self, group: "Entity") -> list[Any]:
        user_model = self._model(EntityKind.USER, group.variant)
        if group.variant is SchemaVariant.POSIX:
            uids = normalize_values(group.get("memberUid"))
            if not uids:
                return []
            users = user_model.find(self.session, or_(*[eq("uid", uid) for uid in uids]))
            if len(users) != len(uids):
                found = {str(user.get("uid")).lower() for user in users}
                missing = [uid for uid in uids if uid.lower() not in found]
                logger.warning(f"{group}: memberUid without a user: {missing}")
            return users
        return self._read_by_dn(
            EntityKind.USER, group.variant, normalize_values(group.get("member"))
        )

    def members(self, group: "Entity") -> list[Any]:
        """Primary and secondary members, each user once."""
        users: list[Any] = []
        for user in self.primary_members(group) + self.secondary_members(group):
            if user not in users:
                users.append(user)
        return users

    def has_members(self, group: "Entity") -> bool:
        return bool(self.primary_members(group) or self.secondary_members(group))

    # -- user side ------------------------------------------------------------------

    def primary_group(self, user: "Entity") -> Any:
        """The group ``user`` has as its primary group, or ``None``."""
        self._check_kind(user, EntityKind.USER)
        return self._cached(user, "primary_group", lambda: self._primary_group(user))

    def _primary_group(self, user: "Entity") -> Any:
        group = self._model(EntityKind.GROUP, user.variant)(self.session)
        if user.variant is SchemaVariant.POSIX:
            gid = user.get("gidNumber")
            if gid is None:
                return None
            return group.read("gidNumber", gid)
        rid, sid = user.get("primaryGroupID"), user.get("objectSID")
        if rid is None or sid is None:
            return None
        return group.read("objectSID", group_sid(sid, rid))

    def secondary_groups(self, user: "Entity") -> list[Any]:
        """Groups listing ``user`` in their membership attribute."""
        self._check_kind(user, EntityKind.USER)
        return self._cached(
            user, "secondary_groups", lambda: self._secondary_groups(user)
        )

    def _secondary_groups(self, user: "Entity") -> list[Any]:
        group_model = self._model(EntityKind.GROUP, user.variant)
        if user.variant is SchemaVariant.POSIX:
            uid = user.get("uid")
            if uid is None:
                return []
            return group_model.find(self.session, eq("memberUid", uid))
        return self._read_by_dn(
            EntityKind.GROUP, user.variant, normalize_values(user.get("memberOf"))
        )

    # -- staging ------------------------------------------------------------------

    @staticmethod
    def member_value(group: "Entity", user: "Entity") -> str:
        """The value identifying ``user`` in the membership attribute of ``group``."""
        if group.variant is SchemaVariant.POSIX:
            value = user.get("uid")
        else:
            value = user.dn or user.get("distinguishedName")
        if not value:
            raise ValidationError(
                f"{user!r} has no {'uid' if group.variant is SchemaVariant.POSIX else 'DN'}"
            )
        return str(value)

    @staticmethod
    def _is_listed(group: "Entity", value: str) -> bool:
        for listed in group.get(group.membership_attribute):  # type: ignore[attr-defined]
            if group.variant is SchemaVariant.POSIX:
                if listed.lower() == value.lower():
                    return True
            elif same_dn(listed, value):
                return True
        return False

    def add_member(self, group: "Entity", user: "Entity") -> None:
        """Stage ``user`` as a secondary member of ``group``.

        Persist it with ``group.update()``.

        Raises
        ------
        AlreadyMember
            ``user`` is already listed.
        """
        self._check_kind(group, EntityKind.GROUP)
        value = self.member_value(group, user)
        if self._is_listed(group, value):
            raise AlreadyMember(f"{user} is already a member of {group}")
        attribute = group.membership_attribute  # type: ignore[attr-defined]
        group.set(attribute, group.get(attribute) + [value])
        self.invalidate(group)

    def remove_member(self, group: "Entity", user: "Entity") -> None:
        """Stage the removal of ``user`` from the secondary members of ``group``.

        Raises
        ------
        NotAMember
            ``user`` is not listed.
        """
        self._check_kind(group, EntityKind.GROUP)
        value = self.member_value(group, user)
        if not self._is_listed(group, value):
            raise NotAMember(f"{user} is not a member of {group}")
        attribute = group.membership_attribute  # type: ignore[attr-defined]
        remaining = [
            listed
            for listed in group.get(attribute)
            if not (
                listed.lower() == value.lower()
                if group.variant is SchemaVariant.POSIX
                else same_dn(listed, value)
            )
        ]
        group.set(attribute, remaining)
        self.invalidate(group)
