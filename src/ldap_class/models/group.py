"""This module holds the group models."""
from typing import Any
from loguru import logger
from ldap3 import BASE
from ldap_class.entity import Attribute, Entity
from ldap_class.exceptions import ReconciliationError, ValidationError
from ldap_class.planners.ad import AdGroupPlanner
from ldap_class.planners.posix import PosixGroupPlanner
from ldap_class.schema import EntityKind, SchemaVariant
from ldap_class.utils.filters import dn, rdn


class Group(Entity):
    """Behaviour common to every group variant.

    Membership is read through the session's relationship resolver and
    cached on the group until it is written or re-read.
    """

    kind = EntityKind.GROUP
    membership_attribute: str

    cn = Attribute("cn")
    description = Attribute("description")

    @property
    def name(self) -> Any:
        return self.get("cn")

    @property
    def gid(self) -> Any:
        raise NotImplementedError

    def primary_members(self) -> list[Any]:
        return self.session.resolver.primary_members(self)

    def secondary_members(self) -> list[Any]:
        return self.session.resolver.secondary_members(self)

    def members(self) -> list[Any]:
        return self.session.resolver.members(self)

    def has_members(self) -> bool:
        return self.session.resolver.has_members(self)

    def has_user(self, user: Any) -> bool:
        """True if ``user`` (a user object or a username) is a primary or
        secondary member of the group."""
        name = getattr(user, "username", user)
        if not name:
            raise ValidationError(f"Can not look up membership of {user!r}")
        return any(
            str(member.username).lower() == str(name).lower()
            for member in self.members()
        )

    def add_member(self, user: Any) -> None:
        """Stage ``user`` as a secondary member. Call ``update()`` to write it."""
        self.session.resolver.add_member(self, user)

    def remove_member(self, user: Any) -> None:
        """Stage the removal of a secondary member. Call ``update()`` to write it."""
        self.session.resolver.remove_member(self, user)


class PosixGroup(Group):
    """A ``posixGroup`` entry and the ``ou=<cn>,ou=People`` unit holding its
    primary members.

    Examples
    --------
    >>> eng = PosixGroup(session, cn="eng", gidNumber=1000).create()
    >>> eng.gid
    1000
    """

    variant = SchemaVariant.POSIX
    planner_class = PosixGroupPlanner
    membership_attribute = "memberUid"

    gidNumber = Attribute("gidNumber")
    memberUid = Attribute("memberUid")

    @property
    def gid(self) -> Any:
        return self.get("gidNumber")

    def unit_dn(self) -> str:
        people = self.session.registry.resolve(EntityKind.USER, self.variant)
        return dn(rdn("ou", self.get("cn")), people.search_base)

    def read(self, *args: Any, **kwargs: Any) -> "PosixGroup | None":
        """Read the group and check its organizational unit exists.

        Raises
        ------
        ReconciliationError
            The group exists without its unit.
        """
        found = super().read(*args, **kwargs)
        if found is None:
            return None
        if not self.session.transport.search(
            self.unit_dn(), "(objectClass=*)", BASE, attributes=["ou"]
        ):
            raise ReconciliationError(
                f"Group {self} has no organizational unit at {self.unit_dn()}"
            )
        return self


class AdGroup(Group):
    """An Active Directory ``group``. Its gid is the server assigned
    ``primaryGroupToken``."""

    variant = SchemaVariant.AD
    planner_class = AdGroupPlanner
    membership_attribute = "member"

    member = Attribute("member")
    info = Attribute("info")
    primaryGroupToken = Attribute("primaryGroupToken")
    objectSID = Attribute("objectSID")
    distinguishedName = Attribute("distinguishedName")

    @property
    def gid(self) -> Any:
        return self.get("primaryGroupToken")

    def read(self, *args: Any, **kwargs: Any) -> "AdGroup | None":
        """Read the group.

        ``primaryGroupToken`` is a constructed attribute that AD only returns
        for base searches, so it is fetched separately when the first search
        did not include it.
        """
        found = super().read(*args, **kwargs)
        if found is None or self.get("primaryGroupToken") is not None:
            return found
        entries = self.session.transport.search(
            self.dn, "(objectClass=*)", BASE, attributes=["primaryGroupToken"]
        )
        if entries and entries[0].get_values("primaryGroupToken"):
            self.entry.replace(  # type: ignore[union-attr]
                "primaryGroupToken", entries[0].get_values("primaryGroupToken")
            )
        else:
            logger.warning(f"Group {self} has no primaryGroupToken")
        return self
