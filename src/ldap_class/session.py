"""This module ties a transport, a schema registry, the relationship resolver
and the batch executor together."""
from typing import Any
from loguru import logger
from ldap3 import SUBTREE
from ldap_class.batch import BatchExecutor
from ldap_class.exceptions import ConfigurationError
from ldap_class.models.group import AdGroup, PosixGroup
from ldap_class.models.user import AdUser, PosixUser
from ldap_class.relationships import RelationshipResolver
from ldap_class.schema import EntityKind, SchemaRegistry, SchemaVariant
from ldap_class.utils.filters import and_, eq, present
from ldap_class.utils.ldap_wrapper import LdapInterface
from ldap_class.utils.utilities import collect_numbers, fill_array_gaps

MODELS = {
    (EntityKind.GROUP, SchemaVariant.POSIX): PosixGroup,
    (EntityKind.USER, SchemaVariant.POSIX): PosixUser,
    (EntityKind.GROUP, SchemaVariant.AD): AdGroup,
    (EntityKind.USER, SchemaVariant.AD): AdUser,
}

ID_ATTRIBUTES = {EntityKind.USER: "uidNumber", EntityKind.GROUP: "gidNumber"}


class DirectorySession:
    """One logical session against one directory connection.

    Not thread safe: use one session, and one connection, per thread.

    Parameters
    ----------
    transport :
        A bound ``LdapInterface`` (``LdapWrapper`` or ``NoOp``).
    registry :
        The schemas of the entity types used through this session.
    models :
        Model class per entity type, to use subclasses of the built-in ones.

    Examples
    --------
    >>> session = DirectorySession(ldap_connections["posix"], registry)
    >>> eng = session.posix_group(cn="eng", gidNumber=1000).create()
    >>> alice = session.posix_user(uid="alice", uidNumber=2000, gecos="Alice", group=eng)
    >>> alice.create()
    """

    def __init__(
        self,
        transport: LdapInterface,
        registry: SchemaRegistry,
        models: dict[tuple[EntityKind, SchemaVariant], type] | None = None,
    ) -> None:
        """Initialization of the class."""
        self.transport = transport
        self.registry = registry
        self.models = {**MODELS, **(models or {})}
        self.resolver = RelationshipResolver(self)
        self.executor = BatchExecutor(transport)

    def model(self, kind: EntityKind, variant: SchemaVariant) -> Any:
        """The model class used for an entity type.

        Raises
        ------
        ConfigurationError
            Nothing is registered for that type.
        """
        try:
            return self.models[(EntityKind(kind), SchemaVariant(variant))]
        except (KeyError, ValueError):
            raise ConfigurationError(f"No model for {variant} {kind}") from None

    def posix_group(self, **attributes: Any) -> PosixGroup:
        return self.model(EntityKind.GROUP, SchemaVariant.POSIX)(self, **attributes)

    def posix_user(self, **attributes: Any) -> PosixUser:
        return self.model(EntityKind.USER, SchemaVariant.POSIX)(self, **attributes)

    def ad_group(self, **attributes: Any) -> AdGroup:
        return self.model(EntityKind.GROUP, SchemaVariant.AD)(self, **attributes)

    def ad_user(self, **attributes: Any) -> AdUser:
        return self.model(EntityKind.USER, SchemaVariant.AD)(self, **attributes)

    def next_free_id(self, kind: EntityKind, offset: int | None = None) -> int:
        """Lowest unused uidNumber/gidNumber at or above ``offset``.

        Parameters
        ----------
        kind :
            ``EntityKind.USER`` for uidNumber, ``EntityKind.GROUP`` for gidNumber.
        offset :
            First id to consider. Defaults to the schema's ``id_offset``
            default, or 1000.

        Examples
        --------
        >>> session.next_free_id(EntityKind.GROUP, 1000)
        1003
        """
        kind = EntityKind(kind)
        schema = self.registry.resolve(kind, SchemaVariant.POSIX)
        attribute = ID_ATTRIBUTES[kind]
        if offset is None:
            offset = int(schema.defaults.get("id_offset", 1000))
        entries = self.transport.search(
            schema.search_base,
            and_(eq("objectClass", schema.structural_class), present(attribute)),
            SUBTREE,
            attributes=[attribute],
        )
        values = [value for entry in entries for value in entry.get_values(attribute)]
        numbers = collect_numbers(values, attribute)
        reserved = schema.defaults.get("reserved_gid")
        if reserved is not None:
            numbers.append(int(reserved))
        free = fill_array_gaps(numbers, offset)
        logger.debug(f"Next free {attribute} from {offset}: {free}")
        return free

    def close(self) -> None:
        """Drop cached relationships and unbind the transport."""
        self.resolver.clear()
        self.transport.unbind()
