"""This module holds the user models."""
from typing import Any, Callable
from loguru import logger
from ldap_class.entity import Attribute, Entity
from ldap_class.exceptions import (
    AlreadyMember,
    NotAMember,
    PlanningError,
    ValidationError,
)
from ldap_class.models.group import AdGroup, Group, PosixGroup
from ldap_class.planners.ad import AdUserPlanner
from ldap_class.planners.posix import PosixUserPlanner
from ldap_class.schema import EntityKind, SchemaVariant
from ldap_class.utils.passwords import encode_ad_password, random_string, ssha_hash
from ldap_class.utils.utilities import group_sid


class User(Entity):
    """Behaviour common to every user variant.

    Parameters
    ----------
    session :
        The directory session.
    entry :
        The persisted state, when the user comes from a search.
    group :
        Primary group to stage: a group object or a group name.
    groups :
        Secondary groups to stage, replacing the current ones on write.
    password :
        A clear text password, stored with the variant's password strategy.
    **attributes :
        Initial attribute values.

    Examples
    --------
    >>> alice = PosixUser(session, uid="alice", uidNumber=2000, gecos="Alice Liddell",
    ...                   group="eng").create()
    >>> alice.primary_group().name
    'eng'
    """

    kind = EntityKind.USER
    group_model: type
    password_attribute: str
    password_strategy: Callable[[str], Any]
    password_length = 10

    def __init__(
        self,
        session: Any,
        entry: Any = None,
        group: Any = None,
        groups: list[Any] | None = None,
        password: str | None = None,
        **attributes: Any,
    ) -> None:
        """Initialization of the class."""
        self.staged_group: Any = None
        self.staged_groups: list[Any] | None = None
        self.last_password: str | None = None
        super().__init__(session, entry, **attributes)
        if group is not None:
            self.group = group
        if groups is not None:
            self.groups = groups
        if password is not None:
            self.password = password

    @property
    def username(self) -> Any:
        raise NotImplementedError

    # -- relationships ----------------------------------------------------------

    def primary_group(self) -> Any:
        """The staged primary group, or the one stored in the directory."""
        if self.staged_group is not None:
            return self.resolve_group(self.staged_group)
        return self.session.resolver.primary_group(self)

    def secondary_groups(self) -> list[Any]:
        """The staged secondary groups, or the ones stored in the directory."""
        if self.staged_groups is not None:
            return [self.resolve_group(group) for group in self.staged_groups]
        return self.session.resolver.secondary_groups(self)

    @property
    def group(self) -> Any:
        return self.primary_group()

    @group.setter
    def group(self, group: Any) -> None:
        self._ensure_usable()
        self.staged_group = group

    @property
    def groups(self) -> list[Any]:
        return self.secondary_groups()

    @groups.setter
    def groups(self, groups: list[Any]) -> None:
        self._ensure_usable()
        self.staged_groups = list(groups)

    def add_to_group(self, group: Any) -> None:
        """Stage a new secondary group. Call ``update()`` to write it.

        Raises
        ------
        AlreadyMember
            The user is already in that group.
        """
        group = self.resolve_group(group)
        current = self.secondary_groups()
        if group in current:
            raise AlreadyMember(f"{self} is already a member of {group}")
        self.staged_groups = current + [group]

    def remove_from_group(self, group: Any) -> None:
        """Stage the removal of a secondary group. Call ``update()`` to write it.

        Raises
        ------
        NotAMember
            The user is not in that group.
        """
        group = self.resolve_group(group)
        current = self.secondary_groups()
        if group not in current:
            raise NotAMember(f"{self} is not a member of {group}")
        self.staged_groups = [listed for listed in current if listed != group]

    def resolve_group(self, group: Any) -> Any:
        """Turn a group object or name into a group read from the directory.

        Raises
        ------
        PlanningError
            No such group.
        """
        if isinstance(group, Group):
            if group.variant is not self.variant:
                raise ValidationError(
                    f"{group!r} is not a {self.variant.value} group"
                )
            if group.is_bound:
                return group
            found = group.read()
        elif isinstance(group, str) and not group.isdigit():
            found = self.group_model(self.session).read("cn", group)
        else:
            found = self.group_by_id(int(group))
        if found is None:
            raise PlanningError(f"No such group: {group}")
        return found

    def group_by_id(self, gid: int) -> Any:
        raise NotImplementedError

    # -- passwords ----------------------------------------------------------------

    @property
    def password(self) -> Any:
        """The stored (hashed or encoded) password."""
        return self.get(self.password_attribute)

    @password.setter
    def password(self, password: str) -> None:
        self.last_password = password
        self.set(self.password_attribute, type(self).password_strategy(password))

    def new_password(self, length: int | None = None) -> str:
        """Set a random password and return it in clear text."""
        password = random_string(length or self.password_length)
        self.password = password
        return password

    def _clear_staged(self) -> None:
        self.staged_group = None
        self.staged_groups = None

    def create(self) -> "User":
        """Create the user, generating a random password when none was set.

        The clear text of a generated password is left in ``last_password``.
        """
        if self.get(self.password_attribute) is None:
            logger.info(f"No password given for {self}, generating one")
            self.new_password()
        return super().create()  # type: ignore[return-value]


class PosixUser(User):
    """A ``posixAccount`` living under its primary group's unit.

    Passwords are stored as ``{SSHA}`` hashes.
    """

    variant = SchemaVariant.POSIX
    planner_class = PosixUserPlanner
    group_model = PosixGroup
    password_attribute = "userPassword"
    password_strategy = staticmethod(ssha_hash)

    uid = Attribute("uid")
    uidNumber = Attribute("uidNumber")
    gidNumber = Attribute("gidNumber")
    gecos = Attribute("gecos")
    cn = Attribute("cn")
    sn = Attribute("sn")
    givenName = Attribute("givenName")
    mail = Attribute("mail")
    homeDirectory = Attribute("homeDirectory")
    loginShell = Attribute("loginShell")

    @property
    def username(self) -> Any:
        return self.get("uid")

    @property
    def gid(self) -> Any:
        return self.get("gidNumber")

    def group_by_id(self, gid: int) -> Any:
        return self.group_model(self.session).read("gidNumber", gid)


class AdUser(User):
    """An Active Directory ``user``.

    Passwords are written to ``unicodePwd`` as the quoted UTF-16LE string AD
    expects.
    """

    variant = SchemaVariant.AD
    planner_class = AdUserPlanner
    group_model = AdGroup
    password_attribute = "unicodePwd"
    password_strategy = staticmethod(encode_ad_password)

    sAMAccountName = Attribute("sAMAccountName")
    cn = Attribute("cn")
    sn = Attribute("sn")
    givenName = Attribute("givenName")
    displayName = Attribute("displayName")
    mail = Attribute("mail")
    homeDirectory = Attribute("homeDirectory")
    homeDrive = Attribute("homeDrive")
    profilePath = Attribute("profilePath")
    primaryGroupID = Attribute("primaryGroupID")
    memberOf = Attribute("memberOf")
    objectSID = Attribute("objectSID")
    distinguishedName = Attribute("distinguishedName")

    @property
    def username(self) -> Any:
        return self.get("sAMAccountName")

    @property
    def gid(self) -> Any:
        return self.get("primaryGroupID")

    def group_by_id(self, gid: int) -> Any:
        """Find a group by its ``primaryGroupToken``.

        The token is the group's RID, and the group shares the user's domain,
        so the lookup goes through the SID.
        """
        sid = self.get("objectSID")
        if sid is None:
            raise PlanningError(
                f"Can not look up group {gid} for {self}: the user has no objectSID yet"
            )
        return self.group_model(self.session).read("objectSID", group_sid(sid, gid))
