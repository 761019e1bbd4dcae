"""This module is the schema registry.

Every entity type (User/Group x POSIX/AD) is described once by an
``EntitySchema`` and looked up through an explicit ``SchemaRegistry`` instance.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from loguru import logger
from ldap_class.exceptions import ConfigurationError, ValidationError
from ldap_class.utils.filters import dn


class EntityKind(str, Enum):
    USER = "user"
    GROUP = "group"


class SchemaVariant(str, Enum):
    POSIX = "posix"
    AD = "ad"


RESERVED_GID = 999999
"""Sentinel gidNumber held by a POSIX group while it is being renamed."""

POSIX_GROUP_ATTRIBUTES = ["cn", "gidNumber", "memberUid", "description"]
POSIX_GROUP_UNIQUE_ATTRIBUTES = ["cn", "gidNumber"]

POSIX_USER_ATTRIBUTES = [
    "uid",
    "userPassword",
    "uidNumber",
    "gidNumber",
    "gecos",
    "cn",
    "mail",
    "sn",
    "givenName",
    "pwdChangedTime",
    "homeDirectory",
    "loginShell",
]
POSIX_USER_UNIQUE_ATTRIBUTES = ["uid", "uidNumber"]

AD_GROUP_ATTRIBUTES = [
    "canonicalName",
    "cn",
    "description",
    "distinguishedName",
    "info",
    "member",
    "primaryGroupToken",
    "whenChanged",
    "whenCreated",
    "objectClass",
    "objectSID",
]
AD_GROUP_UNIQUE_ATTRIBUTES = ["cn", "objectSID", "distinguishedName"]

AD_USER_ATTRIBUTES = [
    "accountExpires",
    "canonicalName",
    "cn",
    "description",
    "displayName",
    "distinguishedName",
    "givenName",
    "groupAttributes",
    "homeDirectory",
    "homeDrive",
    "mail",
    "memberOf",
    "middleName",
    "modifyTimeStamp",
    "notes",
    "objectClass",
    "objectSID",
    "primaryGroupID",
    "profilePath",
    "pwdLastSet",
    "sAMAccountName",
    "sAMAccountType",
    "sn",
    "uid",
    "unicodePwd",
]
AD_USER_UNIQUE_ATTRIBUTES = ["sAMAccountName", "cn", "objectSID"]


@dataclass
class EntitySchema:
    """Static metadata for one entity type.

    Parameters
    ----------
    kind :
        User or group.
    variant :
        POSIX or AD.
    base_dn :
        Root of the directory tree the type lives under.
    container :
        RDN path between the base and the entries, e.g. ``ou=People``.
    attributes :
        Every attribute the type exposes, in declaration order.
    unique_attributes :
        Ordered subset that can serve as a lookup key.
    object_classes :
        Object classes written on create. The last one is used in read filters.
    naming_attribute :
        The attribute embedded in the entry's RDN.
    read_only_attributes :
        Server-computed attributes; never replaced by an update.
    multi_valued_attributes :
        Attributes always exposed as lists.
    integer_attributes :
        Attributes exposed as ``int``.
    defaults :
        Type specific defaults (login shell, home directory, ...).
    """

    kind: EntityKind
    variant: SchemaVariant
    base_dn: str
    container: str
    attributes: list[str]
    unique_attributes: list[str]
    object_classes: list[str]
    naming_attribute: str
    read_only_attributes: list[str] = field(default_factory=list)
    multi_valued_attributes: list[str] = field(default_factory=list)
    integer_attributes: list[str] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Check the declaration is self consistent."""
        if not self.base_dn:
            raise ConfigurationError(f"{self.key}: base_dn is required")
        if not self.unique_attributes:
            raise ConfigurationError(f"{self.key}: needs at least one unique attribute")
        self._names = {name.lower(): name for name in self.attributes}
        for group_name in (
            "unique_attributes",
            "read_only_attributes",
            "multi_valued_attributes",
            "integer_attributes",
        ):
            for name in getattr(self, group_name):
                if name.lower() not in self._names:
                    raise ConfigurationError(
                        f"{self.key}: {group_name} entry '{name}' is not a declared "
                        "attribute"
                    )
        if self.naming_attribute.lower() not in self._names:
            raise ConfigurationError(
                f"{self.key}: naming attribute '{self.naming_attribute}' "
                "is not a declared attribute"
            )

    @property
    def key(self) -> tuple[EntityKind, SchemaVariant]:
        return (self.kind, self.variant)

    @property
    def search_base(self) -> str:
        """The base DN searches for this type start from."""
        return dn(self.container, self.base_dn)

    @property
    def structural_class(self) -> str:
        return self.object_classes[-1]

    def has_attribute(self, name: str) -> bool:
        return name.lower() in self._names

    def canonical(self, name: str) -> str:
        """Return the declared spelling of ``name``.

        Raises
        ------
        ValidationError
            ``name`` is not an attribute of this type.
        """
        try:
            return self._names[name.lower()]
        except KeyError:
            raise ValidationError(
                f"No such attribute '{name}' for {self.variant.value} "
                f"{self.kind.value}. Declared attributes: {', '.join(self.attributes)}"
            ) from None

    def _is_in(self, name: str, names: list[str]) -> bool:
        return name.lower() in {entry.lower() for entry in names}

    def is_read_only(self, name: str) -> bool:
        return self._is_in(name, self.read_only_attributes)

    def is_multi_valued(self, name: str) -> bool:
        return self._is_in(name, self.multi_valued_attributes)

    def is_integer(self, name: str) -> bool:
        return self._is_in(name, self.integer_attributes)


def _posix_group(base_dn: str, container: str = "ou=Group", **extra: Any) -> EntitySchema:
    return EntitySchema(
        kind=EntityKind.GROUP,
        variant=SchemaVariant.POSIX,
        base_dn=base_dn,
        container=container,
        attributes=POSIX_GROUP_ATTRIBUTES + extra.get("attributes", []),
        unique_attributes=list(POSIX_GROUP_UNIQUE_ATTRIBUTES),
        object_classes=["top", "posixGroup"],
        naming_attribute="cn",
        multi_valued_attributes=["memberUid"],
        integer_attributes=["gidNumber"],
        defaults={"reserved_gid": RESERVED_GID, **extra.get("defaults", {})},
    )


def _posix_user(base_dn: str, container: str = "ou=People", **extra: Any) -> EntitySchema:
    return EntitySchema(
        kind=EntityKind.USER,
        variant=SchemaVariant.POSIX,
        base_dn=base_dn,
        container=container,
        attributes=POSIX_USER_ATTRIBUTES + extra.get("attributes", []),
        unique_attributes=list(POSIX_USER_UNIQUE_ATTRIBUTES),
        object_classes=["top", "person", "shadowAccount", "posixAccount"],
        naming_attribute="uid",
        read_only_attributes=["pwdChangedTime"],
        integer_attributes=["uidNumber", "gidNumber"],
        defaults={
            "login_shell": "/bin/bash",
            "home_dir": "/home",
            "email_suffix": "",
            **extra.get("defaults", {}),
        },
    )


def _ad_group(base_dn: str, container: str = "", **extra: Any) -> EntitySchema:
    return EntitySchema(
        kind=EntityKind.GROUP,
        variant=SchemaVariant.AD,
        base_dn=base_dn,
        container=container,
        attributes=AD_GROUP_ATTRIBUTES + extra.get("attributes", []),
        unique_attributes=list(AD_GROUP_UNIQUE_ATTRIBUTES),
        object_classes=["top", "group"],
        naming_attribute="cn",
        read_only_attributes=[
            "objectSID",
            "primaryGroupToken",
            "canonicalName",
            "distinguishedName",
            "whenChanged",
            "whenCreated",
        ],
        multi_valued_attributes=["member", "objectClass"],
        integer_attributes=["primaryGroupToken"],
        defaults=dict(extra.get("defaults", {})),
    )


def _ad_user(base_dn: str, container: str = "CN=Users", **extra: Any) -> EntitySchema:
    return EntitySchema(
        kind=EntityKind.USER,
        variant=SchemaVariant.AD,
        base_dn=base_dn,
        container=container,
        attributes=AD_USER_ATTRIBUTES + extra.get("attributes", []),
        unique_attributes=list(AD_USER_UNIQUE_ATTRIBUTES),
        object_classes=["top", "person", "organizationalPerson", "user"],
        naming_attribute="cn",
        read_only_attributes=[
            "objectSID",
            "memberOf",
            "modifyTimeStamp",
            "canonicalName",
            "distinguishedName",
            "pwdLastSet",
            "sAMAccountType",
        ],
        multi_valued_attributes=["memberOf", "objectClass"],
        integer_attributes=["primaryGroupID"],
        defaults={"home_dir": "\\home", "email_suffix": "", **extra.get("defaults", {})},
    )


_BUILDERS = {
    (EntityKind.GROUP, SchemaVariant.POSIX): _posix_group,
    (EntityKind.USER, SchemaVariant.POSIX): _posix_user,
    (EntityKind.GROUP, SchemaVariant.AD): _ad_group,
    (EntityKind.USER, SchemaVariant.AD): _ad_user,
}


class SchemaRegistry:
    """Holds one ``EntitySchema`` per entity type.

    Pass the same instance to every session that should share the metadata;
    there is no global lookup.
    """

    def __init__(self, schemas: list[EntitySchema] | None = None) -> None:
        """Initialization of the class."""
        self._schemas: dict[tuple[EntityKind, SchemaVariant], EntitySchema] = {}
        self._validated: set[type] = set()
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: EntitySchema) -> None:
        """Add or replace the schema for ``schema.key``."""
        if schema.key in self._schemas:
            logger.debug(f"Replacing schema for {schema.variant.value} {schema.kind.value}")
        self._schemas[schema.key] = schema

    def resolve(self, kind: EntityKind, variant: SchemaVariant) -> EntitySchema:
        """Return the schema of an entity type.

        Raises
        ------
        ConfigurationError
            Nothing is registered for that type.
        """
        try:
            return self._schemas[(EntityKind(kind), SchemaVariant(variant))]
        except (KeyError, ValueError):
            raise ConfigurationError(
                f"No schema registered for {getattr(variant, 'value', variant)} "
                f"{getattr(kind, 'value', kind)}"
            ) from None

    def validate_model(self, model: type) -> EntitySchema:
        """Check the typed accessors a model class declares against its schema.

        Done once per class. Returns the resolved schema.

        Raises
        ------
        ConfigurationError
            The model declares an accessor for an attribute the schema lacks.
        """
        schema = self.resolve(model.kind, model.variant)  # type: ignore[attr-defined]
        if model in self._validated:
            return schema
        for accessor in getattr(model, "typed_attributes", lambda: [])():
            if not schema.has_attribute(accessor):
                raise ConfigurationError(
                    f"{model.__name__} declares '{accessor}' but the "
                    f"{schema.variant.value} {schema.kind.value} schema does not"
                )
        self._validated.add(model)
        return schema

    def __contains__(self, key: tuple[EntityKind, SchemaVariant]) -> bool:
        return key in self._schemas

    @classmethod
    def default(cls, base_dns: dict[str, str]) -> "SchemaRegistry":
        """Build the built-in schemas for each variant in ``base_dns``.

        Examples
        --------
        >>> SchemaRegistry.default({"posix": "dc=example,dc=com"})
        """
        registry = cls()
        for variant_name, base_dn in base_dns.items():
            variant = SchemaVariant(variant_name)
            for kind in EntityKind:
                registry.register(_BUILDERS[(kind, variant)](base_dn))
        return registry

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "SchemaRegistry":
        """Build the registry from the loaded YAML configuration.

        Parameters
        ----------
        config :
            The ``config`` part of the basic configuration. Each of the ``posix``
            and ``ad`` sections present contributes the schemas of that variant.

        Examples
        --------
        >>> SchemaRegistry.from_config(
            {
                "posix": {
                    "schema": {
                        "base": "dc=example,dc=com",
                        "objects": {
                            "user": {"container": "ou=People"},
                            "group": {"container": "ou=Group"},
                        },
                    }
                }
            }
        )
        """
        registry = cls()
        for variant in SchemaVariant:
            section = config.get(variant.value)
            if not section:
                continue
            schema_config = section.get("schema")
            if not schema_config or not schema_config.get("base"):
                raise ConfigurationError(
                    f"The '{variant.value}' section needs a schema with a base"
                )
            objects = schema_config.get("objects") or {}
            for kind in EntityKind:
                object_config = dict(objects.get(kind.value) or {})
                options: dict[str, Any] = {
                    "attributes": list(object_config.get("attributes") or []),
                    "defaults": dict(object_config.get("defaults") or {}),
                }
                if "reserved_gid" in schema_config and kind is EntityKind.GROUP:
                    options["defaults"]["reserved_gid"] = int(
                        schema_config["reserved_gid"]
                    )
                if "container" in object_config:
                    options["container"] = object_config["container"] or ""
                registry.register(
                    _BUILDERS[(kind, variant)](schema_config["base"], **options)
                )
            logger.debug(f"Loaded {variant.value} schemas from configuration")
        if not registry._schemas:
            raise ConfigurationError("No 'posix' or 'ad' section in configuration")
        return registry
