"""This module holds every exception raised by the package."""
from typing import Any


class LdapClassError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(LdapClassError):
    """Missing or invalid schema/connection setup. Never retried."""


class ValidationError(LdapClassError):
    """An attribute is missing or unknown, or the entity is in the wrong state
    for the requested operation."""


class PlanningError(LdapClassError):
    """The planner can not build a valid action sequence."""


class MissingAttributeError(ValidationError, PlanningError):
    """A required attribute is missing while building a plan."""


class IntegrityError(LdapClassError):
    """The requested operation would leave the directory inconsistent."""


class AlreadyMember(IntegrityError):
    """The user is already a member of the group."""


class NotAMember(IntegrityError):
    """The user is not a member of the group."""


class ReconciliationError(LdapClassError):
    """A re-read after a write did not find what was written."""


class TransportError(LdapClassError):
    """A structured failure reported by the directory transport.

    Parameters
    ----------
    code :
        The LDAP result code, or ``None`` when the failure happened below the
        protocol (socket errors and the like).
    message :
        Human readable description.
    """

    def __init__(self, code: int | None, message: str) -> None:
        """Initialization of the class."""
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message

    def as_dict(self) -> dict[str, Any]:
        """Return the ``{code, message}`` pair."""
        return {"code": self.code, "message": self.message}


class BatchError(TransportError):
    """A batch failed part way through.

    Both the error that stopped the batch and every failure seen while rolling
    back are kept, so neither masks the other.

    Parameters
    ----------
    failed_action :
        The action that raised.
    original :
        The exception raised by that action.
    applied :
        Actions that had been applied before the failure, in order.
    rollback_errors :
        ``(action, exception)`` pairs for every undo step that failed.
    """

    def __init__(
        self,
        failed_action: Any,
        original: BaseException,
        applied: list[Any],
        rollback_errors: list[tuple[Any, BaseException]],
    ) -> None:
        """Initialization of the class."""
        code = getattr(original, "code", None)
        message = f"{failed_action} failed: {getattr(original, 'message', original)}"
        if rollback_errors:
            message += f" (rollback incomplete: {len(rollback_errors)} step(s) failed)"
        super().__init__(code, message)
        self.failed_action = failed_action
        self.original = original
        self.applied = applied
        self.rollback_errors = rollback_errors

    @property
    def rolled_back(self) -> bool:
        """True if every applied action was undone."""
        return not self.rollback_errors


class RollbackError(LdapClassError):
    """Undoing a completed batch left some of its actions in place.

    ``errors`` holds the ``(action, exception)`` pair of every undo step that
    failed.
    """

    def __init__(self, errors: list[tuple[Any, BaseException]]) -> None:
        """Initialization of the class."""
        super().__init__(
            f"Rollback incomplete, {len(errors)} step(s) failed: "
            + "; ".join(f"{action}: {error}" for action, error in errors)
        )
        self.errors = errors
