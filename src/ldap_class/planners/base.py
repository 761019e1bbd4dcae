"""This module holds what every planner shares and the ``plan`` entry point."""
from typing import Any, Iterable, TYPE_CHECKING
from loguru import logger
from ldap_class.actions import Plan
from ldap_class.entry import normalize_values
from ldap_class.exceptions import (
    IntegrityError,
    MissingAttributeError,
    PlanningError,
    ValidationError,
)
from ldap_class.schema import EntityKind

if TYPE_CHECKING:  # pragma: no cover
    from ldap_class.entity import Entity

OPERATIONS = ("create", "update", "delete")


class Planner:
    """Build the action plans for one entity.

    Planners read the entity, its change ledger and, where relationships are
    involved, the directory; they never write. The plan they return is executed
    by the batch executor.

    Parameters
    ----------
    entity :
        The entity to plan for.
    """

    def __init__(self, entity: "Entity") -> None:
        """Initialization of the class."""
        self.entity = entity
        self.schema = entity.schema
        self.session = entity.session

    def plan_create(self) -> Plan:
        raise NotImplementedError

    def plan_update(self) -> Plan:
        raise NotImplementedError

    def plan_delete(self) -> Plan:
        raise NotImplementedError

    # -- helpers ------------------------------------------------------------------

    def model(self, kind: EntityKind) -> Any:
        return self.session.model(kind, self.entity.variant)

    def require(self, operation: str, *names: str) -> list[Any]:
        """Return the values of ``names``.

        Raises
        ------
        MissingAttributeError
            One of them has no value.
        """
        values = []
        for name in names:
            value = self.entity.get(name)
            if not normalize_values(value):
                raise MissingAttributeError(f"{name} required to {operation}()")
            values.append(value)
        return values

    def require_bound(self, operation: str) -> None:
        if not self.entity.is_bound:
            raise ValidationError(
                f"{self.entity!r} must be read from the directory before {operation}()"
            )

    def baseline(self, name: str) -> Any:
        """The value ``name`` had at the last synchronization."""
        change = self.entity.tracker.get(self.schema.canonical(name))
        return change.old if change else self.entity.get(name)

    def is_changed(self, name: str) -> bool:
        return self.schema.canonical(name) in self.entity.tracker

    def replacements(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Dirty attributes and their new values, ready for an ``Update``.

        Server computed attributes are dropped. A cleared attribute maps to
        ``None``, which removes it.
        """
        excluded = {name.lower() for name in exclude}
        replacements = {}
        for name in self.entity.tracker:
            if self.schema.is_read_only(name):
                logger.debug(f"{self.entity}: {name} is set by the server, not replacing")
                continue
            if name.lower() in excluded:
                continue
            value = self.entity.get(name)
            replacements[name] = value if normalize_values(value) else None
        return replacements

    def creation_attributes(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Every writable attribute holding a value, plus the object classes."""
        excluded = {name.lower() for name in exclude}
        attributes: dict[str, Any] = {"objectClass": list(self.schema.object_classes)}
        for name in self.schema.attributes:
            if self.schema.is_read_only(name) or name.lower() in excluded:
                continue
            if name.lower() == "objectclass":
                continue
            value = self.entity.get(name)
            if normalize_values(value):
                attributes[name] = value
        return attributes

    def guard_members(self) -> None:
        """Refuse to remove a group that still has members.

        Raises
        ------
        IntegrityError
            The group has primary or secondary members.
        """
        resolver = self.session.resolver
        resolver.invalidate(self.entity)
        primary = resolver.primary_members(self.entity)
        secondary = resolver.secondary_members(self.entity)
        if primary or secondary:
            raise IntegrityError(
                f"Group {self.entity} still has members "
                f"(primary: {[str(user) for user in primary]}, "
                f"secondary: {[str(user) for user in secondary]}). "
                "Reassign or remove them first."
            )


def plan(operation: str, entity: "Entity") -> Plan:
    """Compute the plan for ``operation`` on ``entity``.

    Examples
    --------
    >>> print(plan("create", PosixGroup(session, cn="eng", gidNumber=1000)).describe())
    1. add cn=eng,ou=Group,dc=example,dc=com
    2. add ou=eng,ou=People,dc=example,dc=com
    """
    if operation not in OPERATIONS:
        raise PlanningError(
            f"Unknown operation '{operation}', expected one of {', '.join(OPERATIONS)}"
        )
    planner = entity.planner_class(entity)
    result: Plan = getattr(planner, f"plan_{operation}")()
    logger.debug(f"{operation} plan for {entity!r}:\n{result.describe()}")
    return result
