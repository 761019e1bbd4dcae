"""This module runs plans against the directory transport.

LDAP has no transactions, so a batch is made all-or-nothing by recording an
inverse action before every write and replaying those in reverse order when a
later action fails.
"""
from dataclasses import dataclass, field
from typing import Any
from loguru import logger
from ldap3 import BASE, NO_ATTRIBUTES
from ldap_class.actions import Action, Add, Delete, Move, Plan, Search, Target, Update
from ldap_class.entry import DirectoryEntry
from ldap_class.exceptions import (
    BatchError,
    PlanningError,
    RollbackError,
    TransportError,
)
from ldap_class.utils.ldap_wrapper import NO_SUCH_OBJECT, LdapInterface

# Servers never return these (or only to some binds), so an empty read says
# nothing about the value they held.
WRITE_ONLY_ATTRIBUTES = ["unicodePwd", "userPassword"]


@dataclass
class BatchResult:
    """What a successful batch did.

    ``undo`` holds the inverse of every applied action, in the order the
    actions were applied. ``None`` marks an action that can not be undone.
    """

    applied: list[Action] = field(default_factory=list)
    undo: list[Action | None] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.applied)


class BatchExecutor:
    """Execute plans transactionally.

    Parameters
    ----------
    transport :
        The directory transport every action is sent to.

    Examples
    --------
    >>> executor = BatchExecutor(transport)
    >>> executor.execute(Plan([Add("cn=eng,ou=Group,dc=example,dc=com", {...})]))
    BatchResult(applied=[Add(...)])
    """

    def __init__(self, transport: LdapInterface) -> None:
        """Initialization of the class."""
        self.transport = transport

    def resolve(self, target: Target) -> str:
        """Return the DN a target points at.

        Raises
        ------
        TransportError
            A search target matches nothing (code 32, no such object).
        PlanningError
            A search target matches several entries.
        """
        if not isinstance(target, Search):
            return target
        entries = self.transport.search(
            target.base, target.filter, target.scope, attributes=NO_ATTRIBUTES
        )
        if not entries:
            raise TransportError(NO_SUCH_OBJECT, f"No entry matches {target}")
        if len(entries) > 1:
            raise PlanningError(
                f"{target} is ambiguous: {[entry.dn for entry in entries]}"
            )
        return entries[0].dn

    def _read(self, dn: str, attributes: list[str] | None = None) -> DirectoryEntry | None:
        entries = self.transport.search(dn, "(objectClass=*)", BASE, attributes=attributes)
        return entries[0] if entries else None

    def _apply(self, action: Action) -> Action | None:
        """Apply one action and return the action that undoes it."""
        if isinstance(action, Add):
            self.transport.add(action.dn, action.attributes)
            return Delete(action.dn)
        dn = self.resolve(action.target)  # type: ignore[attr-defined]
        if isinstance(action, Update):
            before = self._read(dn, list(action.replacements))
            self.transport.modify(dn, action.replacements)
            return self._undo_update(dn, action, before)
        if isinstance(action, Move):
            self.transport.move(dn, action.new_dn)
            return Move(action.new_dn, dn)
        if isinstance(action, Delete):
            before = self._read(dn)
            self.transport.delete(dn)
            if before is None:
                return None
            return Add(dn, dict(before.attributes))
        raise PlanningError(f"Unknown action {action!r}")

    @staticmethod
    def _undo_update(
        dn: str, action: Update, before: DirectoryEntry | None
    ) -> Update | None:
        """The ``Update`` restoring what ``before`` held.

        Write-only attributes that read back empty are left out: replaying the
        empty read would remove the value instead of restoring it.
        """
        write_only = {name.lower() for name in WRITE_ONLY_ATTRIBUTES}
        previous: dict[str, Any] = {}
        for name in action.replacements:
            values = before.get_values(name) if before else []
            if not values and name.lower() in write_only:
                logger.warning(f"{dn}: {name} can not be read back, it will not be undone")
                continue
            previous[name] = values or None
        if not previous:
            return None
        return Update(dn, previous)

    def _rollback(
        self, undo_actions: list[Action | None]
    ) -> list[tuple[Action, BaseException]]:
        """Replay the inverse actions newest first, carrying on past failures."""
        errors: list[tuple[Action, BaseException]] = []
        for undo in reversed(undo_actions):
            if undo is None:
                logger.warning("An applied action has nothing to undo it, skipping")
                continue
            logger.warning(f"Rolling back: {undo.describe()}")
            try:
                self._apply(undo)
            except Exception as exc:
                logger.error(f"Rollback step '{undo.describe()}' failed: {exc!r}")
                errors.append((undo, exc))
        return errors

    def rollback(self, result: BatchResult) -> None:
        """Undo a batch that ran to completion.

        Raises
        ------
        RollbackError
            Some undo steps failed. The others have been applied.
        """
        if not result.applied:
            logger.debug("Empty batch, nothing to roll back")
            return
        logger.info(f"Rolling back a batch of {len(result)} action(s)")
        errors = self._rollback(result.undo)
        if errors:
            raise RollbackError(errors)

    def execute(self, plan: Plan) -> BatchResult:
        """Run every action of ``plan`` in order.

        Raises
        ------
        BatchError
            An action failed, whatever the exception it raised. Everything
            applied before it has been rolled back (or the rollback failures
            are listed in ``rollback_errors``).
        """
        if not plan:
            logger.debug("Empty plan, nothing to execute")
            return BatchResult()
        logger.debug(f"Executing plan:\n{plan.describe()}")
        result = BatchResult()
        for action in plan:
            try:
                undo = self._apply(action)
            except Exception as exc:
                logger.error(f"'{action.describe()}' failed: {exc!r}")
                rollback_errors = self._rollback(result.undo)
                raise BatchError(action, exc, result.applied, rollback_errors) from exc
            logger.info(action.describe())
            result.applied.append(action)
            result.undo.append(undo)
        return result
