"""This module tracks attribute changes made since the last synchronization."""
from dataclasses import dataclass
from typing import Any, Iterator
from ldap_class.entry import values_equal


@dataclass(frozen=True)
class Change:
    """Value at the last synchronization (``old``) and current value (``new``)."""

    old: Any
    new: Any


class ChangeTracker:
    """Per-entity ledger of dirty attributes.

    An attribute is in the ledger only while its current value differs from the
    value it had when the entity was last synchronized with the directory.

    Examples
    --------
    >>> tracker = ChangeTracker()
    >>> tracker.record_change("cn", "a", "b")
    >>> tracker.record_change("cn", "b", "c")
    >>> tracker.get("cn")
    Change(old="a", new="c")
    >>> tracker.record_change("cn", "c", "a")
    >>> tracker.dirty_attributes()
    set()
    """

    def __init__(self) -> None:
        """Initialization of the class."""
        self._changes: dict[str, Change] = {}

    def record_change(self, attribute: str, old: Any, new: Any) -> None:
        """Record that ``attribute`` went from ``old`` to ``new``.

        ``old`` is only used the first time an attribute is recorded; after
        that the original baseline is kept so diffs always compare against the
        synchronized state, not an intermediate write.
        """
        if attribute in self._changes:
            baseline = self._changes[attribute].old
            if values_equal(baseline, new):
                del self._changes[attribute]
            else:
                self._changes[attribute] = Change(baseline, new)
        elif not values_equal(old, new):
            self._changes[attribute] = Change(old, new)

    def dirty_attributes(self) -> set[str]:
        return set(self._changes)

    def get(self, attribute: str) -> Change | None:
        return self._changes.get(attribute)

    def changes(self) -> dict[str, Change]:
        """Copy of the ledger."""
        return dict(self._changes)

    def discard(self, attribute: str) -> None:
        self._changes.pop(attribute, None)

    def clear(self) -> None:
        self._changes = {}

    def __contains__(self, attribute: object) -> bool:
        return attribute in self._changes

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def __len__(self) -> int:
        return len(self._changes)
