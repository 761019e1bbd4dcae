"""This module holds the in-memory representation of a directory record."""
import json
from typing import Any, TYPE_CHECKING
from loguru import logger
from ldap3 import SUBTREE
from ldap_class.actions import Plan
from ldap_class.batch import BatchResult
from ldap_class.entry import DirectoryEntry, normalize_values, values_equal
from ldap_class.planners.base import plan as build_plan
from ldap_class.exceptions import (
    IntegrityError,
    ReconciliationError,
    ValidationError,
)
from ldap_class.schema import EntityKind, EntitySchema, SchemaVariant
from ldap_class.tracker import Change, ChangeTracker
from ldap_class.utils.filters import and_, eq

if TYPE_CHECKING:  # pragma: no cover
    from ldap_class.session import DirectorySession


class Attribute:
    """Typed accessor for one schema attribute.

    ``PosixGroup.cn = Attribute("cn")`` makes ``group.cn`` a shortcut for
    ``group.get("cn")`` / ``group.set("cn", value)``. The registry checks every
    declared accessor against the schema when the model is first used.
    """

    def __init__(self, name: str) -> None:
        """Initialization of the class."""
        self.name = name

    def __set_name__(self, owner: type, attribute_name: str) -> None:
        self.attribute_name = attribute_name

    def __get__(self, instance: Any, owner: type) -> Any:
        if instance is None:
            return self
        return instance.get(self.name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.set(self.name, value)


def _fold(value: Any) -> list[Any]:
    return sorted(
        (item.lower() if isinstance(item, str) else item)
        for item in normalize_values(value)
    )


class Entity:
    """One directory record.

    Parameters
    ----------
    session :
        The session providing the transport, schema registry, relationship
        resolver and batch executor.
    entry :
        The persisted state, when the entity comes from a search.
    **attributes :
        Initial attribute values. Before the first read they are staged as
        pending values.

    Examples
    --------
    >>> group = PosixGroup(session, cn="eng", gidNumber=1000)
    >>> group.create()
    >>> group.set("description", "Engineering")
    >>> group.update()
    """

    kind: EntityKind
    variant: SchemaVariant
    planner_class: type

    def __init__(
        self,
        session: "DirectorySession",
        entry: DirectoryEntry | None = None,
        **attributes: Any,
    ) -> None:
        """Initialization of the class."""
        self.session = session
        self.schema: EntitySchema = session.registry.validate_model(type(self))
        self._entry = entry
        self._pending: dict[str, Any] = {}
        self._tracker = ChangeTracker()
        self._deleted = False
        self.relation_cache: dict[str, Any] = {}
        self.batch: BatchResult | None = None
        self._undo_state: tuple[str, Any, dict[str, Any]] = ("", None, {})
        for name, value in attributes.items():
            self.set(name, value)

    @classmethod
    def typed_attributes(cls) -> list[str]:
        """Attribute names of every ``Attribute`` accessor the class declares."""
        names = []
        for klass in reversed(cls.__mro__):
            for value in vars(klass).values():
                if isinstance(value, Attribute) and value.name not in names:
                    names.append(value.name)
        return names

    # -- state ----------------------------------------------------------------

    @property
    def is_bound(self) -> bool:
        return self._entry is not None

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def entry(self) -> DirectoryEntry | None:
        return self._entry

    @property
    def dn(self) -> str | None:
        return self._entry.dn if self._entry else None

    @property
    def pending(self) -> dict[str, Any]:
        """Values set before the entity was first read."""
        return dict(self._pending)

    @property
    def changes(self) -> dict[str, Change]:
        """The change ledger."""
        return self._tracker.changes()

    @property
    def tracker(self) -> ChangeTracker:
        return self._tracker

    def _ensure_usable(self) -> None:
        if self._deleted:
            raise ValidationError(f"{self!r} has been deleted")

    def _ensure_bound(self, operation: str) -> None:
        self._ensure_usable()
        if not self.check_unique_attributes_set():
            raise ValidationError(
                f"cannot {operation}() without a unique attribute set. "
                f"Unique attributes include: {', '.join(self.schema.unique_attributes)}"
            )
        if not self.is_bound:
            raise ValidationError(
                f"can't {operation}() {self!r} without first reading it from the "
                "directory"
            )

    # -- attribute access -------------------------------------------------------

    def _coerce(self, name: str, value: Any) -> Any:
        if (
            self.schema.is_integer(name)
            and isinstance(value, str)
            and value.lstrip("-").isdigit()
        ):
            return int(value)
        return value

    def _present(self, name: str, values: list[Any]) -> Any:
        if self.schema.is_multi_valued(name):
            return [self._coerce(name, value) for value in values]
        if not values:
            return None
        if len(values) == 1:
            return self._coerce(name, values[0])
        return [self._coerce(name, value) for value in values]

    def get(self, name: str) -> Any:
        """Return the current value of ``name``.

        Single values come back as scalars, several values (or any value of a
        multi-valued attribute) as a list, and absent attributes as ``None``
        (or ``[]`` for multi-valued ones).

        Raises
        ------
        ValidationError
            ``name`` is not an attribute of this entity type.
        """
        name = self.schema.canonical(name)
        if self._entry is None:
            return self._present(name, normalize_values(self._pending.get(name)))
        return self._present(name, self._entry.get_values(name))

    def set(self, name: str, value: Any) -> None:
        """Set ``name`` to ``value`` (``None`` clears it).

        Before the entity is bound the value is staged; afterwards the change is
        recorded in the change ledger.

        Raises
        ------
        ValidationError
            ``name`` is not an attribute of this entity type, or the entity has
            been deleted.
        """
        self._ensure_usable()
        name = self.schema.canonical(name)
        if self._entry is None:
            if normalize_values(value):
                self._pending[name] = value
            else:
                self._pending.pop(name, None)
            return
        old = self.get(name)
        self._entry.replace(name, value)
        self._tracker.record_change(name, old, self.get(name))

    def unique_lookup(self) -> tuple[str, Any] | None:
        """The first unique attribute holding a value, with that value."""
        for name in self.schema.unique_attributes:
            value = self.get(name)
            if normalize_values(value):
                return name, value
        return None

    def check_unique_attributes_set(self) -> bool:
        return self.unique_lookup() is not None

    # -- directory operations -----------------------------------------------------

    def search_attributes(self) -> list[str]:
        """Attributes requested on every read.

        Listed explicitly, since constructed attributes such as
        ``primaryGroupToken`` are not returned for ``*``.
        """
        return list(self.schema.attributes)

    def read_filter(self, name: str, value: Any) -> str:
        return and_(eq("objectClass", self.schema.structural_class), eq(name, value))

    def read(
        self,
        filter_attribute: str | None = None,
        value: Any = None,
        base_dn: str | None = None,
    ) -> "Entity | None":
        """Load the entity from the directory.

        Without arguments the first unique attribute holding a value is used as
        the lookup key. Values staged before this first read are compared with
        what was found: differing ones become pending changes.

        Returns
        -------
        The entity itself, or ``None`` when nothing matches.

        Raises
        ------
        ValidationError
            No lookup key is available.
        IntegrityError
            The lookup key matches more than one entry.
        """
        self._ensure_usable()
        if filter_attribute is None and value is None:
            lookup = self.unique_lookup()
            if lookup is None:
                raise ValidationError(
                    "cannot read() without unique attribute set. Unique attributes "
                    f"include: {', '.join(self.schema.unique_attributes)}"
                )
            filter_attribute, value = lookup
        elif filter_attribute is None or value is None:
            raise ValidationError("read() needs both a filter attribute and a value")
        filter_attribute = self.schema.canonical(filter_attribute)
        if isinstance(value, list):
            if len(value) != 1:
                raise ValidationError(f"can not read() on {filter_attribute}={value}")
            value = value[0]
        entries = self.session.transport.search(
            base_dn or self.schema.search_base,
            self.read_filter(filter_attribute, value),
            SUBTREE,
            attributes=self.search_attributes(),
        )
        if not entries:
            logger.debug(f"{filter_attribute}={value} not found")
            return None
        if len(entries) > 1:
            raise IntegrityError(
                f"{filter_attribute}={value} matches {len(entries)} entries: "
                f"{[entry.dn for entry in entries]}"
            )
        self._bind(entries[0])
        return self

    def _bind(self, entry: DirectoryEntry) -> None:
        """Make ``entry`` the synchronized baseline."""
        self._tracker.clear()
        pending, self._pending = self._pending, {}
        self._entry = entry
        for name, new in pending.items():
            old = self.get(name)
            if values_equal(old, new):
                continue
            entry.replace(name, new)
            self._tracker.record_change(name, old, self.get(name))
        self.session.resolver.invalidate(self)

    def plan(self, operation: str) -> Plan:
        """Build the plan for ``operation`` without executing it."""
        return build_plan(operation, self)

    def _clear_staged(self) -> None:
        """Forget relationship changes staged on the entity. Models extend it."""

    def _reread(self, lookup: tuple[str, Any], operation: str) -> "Entity":
        self._entry = None
        self._pending = {}
        if self.read(*lookup) is None:
            raise ReconciliationError(
                f"cannot read {self.kind.value} {lookup[0]}={lookup[1]} "
                f"back after {operation}()"
            )
        return self

    def baseline_lookup(self) -> tuple[str, Any] | None:
        """Like ``unique_lookup``, with the values last read from the directory."""
        for name in self.schema.unique_attributes:
            change = self._tracker.get(name)
            value = change.old if change else self.get(name)
            if normalize_values(value):
                return name, value
        return None

    def discard_changes(self) -> None:
        """Put every value of the change ledger back to its baseline."""
        for name, change in self._tracker.changes().items():
            self._entry.replace(name, change.old)  # type: ignore[union-attr]
        self._tracker.clear()

    def create(self) -> "Entity":
        """Write a new entity to the directory, then re-read it.

        Raises
        ------
        ValidationError
            No unique attribute is set, or the entity is already bound.
        ReconciliationError
            The new entry can not be read back.
        """
        self._ensure_usable()
        if self.is_bound:
            raise ValidationError(f"{self!r} already exists, use update()")
        lookup = self.unique_lookup()
        if lookup is None:
            raise ValidationError(
                "at least one unique attribute must be set in order to create()"
            )
        pending = dict(self._pending)
        self.batch = self.session.executor.execute(self.plan("create"))
        self._undo_state = ("create", None, pending)
        self._clear_staged()
        return self._reread(lookup, "create")

    def update(self) -> "Entity":
        """Write the pending changes, then re-read the entity.

        An update with nothing to change is a no-op, not an error. Changes
        that can not be written (server computed attributes) are dropped from
        the ledger and their values put back.
        """
        self._ensure_bound("update")
        plan = self.plan("update")
        if not plan:
            if self._tracker:
                logger.warning(
                    f"{self}: {', '.join(sorted(self._tracker))} can not be written, "
                    "discarding the change"
                )
                self.discard_changes()
            logger.info(f"No attributes have changed for {self}. Skipping update().")
            return self
        baseline = self.baseline_lookup()
        self.batch = self.session.executor.execute(plan)
        self._undo_state = ("update", baseline, {})
        lookup = self.unique_lookup()
        self._tracker.clear()
        self._clear_staged()
        return self._reread(lookup, "update")  # type: ignore[arg-type]

    def delete(self) -> None:
        """Remove the entity from the directory. The object is unusable
        afterwards, apart from ``rollback()``."""
        self._ensure_bound("delete")
        baseline = self.baseline_lookup()
        self.batch = self.session.executor.execute(self.plan("delete"))
        self._undo_state = ("delete", baseline, {})
        self.session.resolver.invalidate(self)
        self._deleted = True
        logger.info(f"Deleted {self.kind.value} {self}")

    def rollback(self) -> "Entity":
        """Undo the last successful ``create()``, ``update()`` or ``delete()``.

        A rolled back creation leaves the entity unbound with its initial
        values staged again; the other operations re-read it.

        Raises
        ------
        ValidationError
            Nothing has been written through this entity since the last
            rollback.
        RollbackError
            Some of the undo steps failed.
        """
        if self.batch is None:
            raise ValidationError(f"{self!r} has no batch to roll back")
        batch, self.batch = self.batch, None
        operation, lookup, pending = self._undo_state
        logger.info(f"Rolling back {operation}() of {self.kind.value} {self}")
        self.session.executor.rollback(batch)
        self.session.resolver.clear()
        self._deleted = False
        self._tracker.clear()
        self._clear_staged()
        if operation == "create":
            self._entry = None
            self._pending = pending
            return self
        return self._reread(lookup, "rollback")

    def dump(self) -> str:
        """A readable snapshot of the entity: identity, state, attribute
        values and the change ledger."""
        if self._entry is None:
            attributes = {name: self._pending[name] for name in sorted(self._pending)}
        else:
            attributes = {
                name: self._present(name, self._entry.get_values(name))
                for name in sorted(self._entry.attributes)
            }
        return json.dumps(
            {
                "type": type(self).__name__,
                "dn": self.dn,
                "bound": self.is_bound,
                "deleted": self.is_deleted,
                "attributes": attributes,
                "changes": {
                    name: {"old": change.old, "new": change.new}
                    for name, change in sorted(self.changes.items())
                },
            },
            indent=2,
            default=str,
        )

    def read_or_create(self) -> "Entity":
        if self.read() is None:
            self.create()
        return self

    @classmethod
    def find(
        cls,
        session: "DirectorySession",
        search_filter: str | None = None,
        base_dn: str | None = None,
    ) -> list[Any]:
        """Return every entity of this type matching ``search_filter``.

        Examples
        --------
        >>> PosixUser.find(session, eq("gidNumber", 1000))
        [<PosixUser uid=alice>]
        """
        schema = session.registry.validate_model(cls)
        type_filter = eq("objectClass", schema.structural_class)
        entries = session.transport.search(
            base_dn or schema.search_base,
            and_(type_filter, search_filter) if search_filter else type_filter,
            SUBTREE,
            attributes=list(schema.attributes),
        )
        return [cls(session, entry=entry) for entry in entries]

    # -- identity ---------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        if (self.kind, self.variant) != (other.kind, other.variant):
            return False
        for name in self.schema.unique_attributes:
            mine, theirs = self.get(name), other.get(name)
            if normalize_values(mine) and normalize_values(theirs):
                return _fold(mine) == _fold(theirs)
        return self is other

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        lookup = self.unique_lookup()
        if lookup is None:
            return type(self).__name__
        return str(lookup[1])

    def __repr__(self) -> str:
        lookup = self.unique_lookup()
        if lookup is None:
            return f"<{type(self).__name__} (no identity)>"
        return f"<{type(self).__name__} {lookup[0]}={lookup[1]}>"
