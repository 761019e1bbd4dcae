"""This module holds the directory mutations a plan is made of."""
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Union
from ldap3 import SUBTREE


@dataclass(frozen=True)
class Search:
    """A target resolved at execution time by a search that must match exactly
    one entry.

    Plans use it when an entry's DN may have changed by the time the action
    runs.
    """

    base: str
    filter: str
    scope: str = SUBTREE

    def __str__(self) -> str:
        return f"{self.filter} under {self.base}"


Target = Union[str, Search]


@dataclass
class Action:
    """Base class of all plan actions."""

    verb = "act"

    def describe(self) -> str:
        return f"{self.verb} {self.target}"  # type: ignore[attr-defined]

    def __str__(self) -> str:
        return self.describe()


@dataclass
class Add(Action):
    """Add a new entry at ``dn``."""

    dn: str
    attributes: dict[str, Any]
    verb = "add"

    @property
    def target(self) -> str:
        return self.dn


@dataclass
class Delete(Action):
    """Delete the entry at ``target``."""

    target: Target
    verb = "delete"


@dataclass
class Update(Action):
    """Replace attributes of ``target``. A ``None`` value removes the attribute."""

    target: Target
    replacements: dict[str, Any]
    verb = "update"

    def describe(self) -> str:
        return f"{self.verb} {self.target} [{', '.join(self.replacements)}]"


@dataclass
class Move(Action):
    """Move/rename the entry at ``target`` so it ends up at ``new_dn``."""

    target: Target
    new_dn: str
    verb = "move"

    def describe(self) -> str:
        return f"{self.verb} {self.target} -> {self.new_dn}"


@dataclass
class Plan:
    """An ordered sequence of actions."""

    actions: list[Action] = field(default_factory=list)

    def add(self, action: Action) -> "Plan":
        self.actions.append(action)
        return self

    def extend(self, actions: Iterable[Action]) -> "Plan":
        self.actions.extend(actions)
        return self

    def describe(self) -> str:
        """One line per action, numbered."""
        return "\n".join(
            f"{number}. {action.describe()}"
            for number, action in enumerate(self.actions, start=1)
        )

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def __bool__(self) -> bool:
        return bool(self.actions)

    def __getitem__(self, index: int) -> Action:
        return self.actions[index]
