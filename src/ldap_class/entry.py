"""This module describes a directory entry as returned by the transport."""
from dataclasses import dataclass, field
from typing import Any
from ldap3.utils.ciDict import CaseInsensitiveDict


def normalize_values(value: Any) -> list[Any]:
    """Convert an attribute value to the list form used on the wire.

    Parameters
    ----------
    value :
        ``None``, a scalar (str, bytes, int) or a sequence of scalars.

    Returns
    -------
    list
        Strings and byte-strings only. ``None`` and empty strings vanish.

    Examples
    --------
    >>> normalize_values(1000)
    ["1000"]
    >>> normalize_values(["alice", None, "bob"])
    ["alice", "bob"]
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        values = []
        for item in value:
            values += normalize_values(item)
        return values
    if isinstance(value, bool):
        return ["TRUE" if value else "FALSE"]
    if isinstance(value, int):
        return [str(value)]
    if isinstance(value, (str, bytes)):
        return [value] if len(value) else []
    return [str(value)]


def values_equal(first: Any, second: Any) -> bool:
    """Compare two attribute values the way the directory would.

    Multi-valued attributes are unordered sets in LDAP, so ordering is ignored.

    Examples
    --------
    >>> values_equal(["b", "a"], ("a", "b"))
    True
    >>> values_equal(1000, "1000")
    True
    """
    return sorted(normalize_values(first), key=repr) == sorted(
        normalize_values(second), key=repr
    )


@dataclass
class DirectoryEntry:
    """One record in the directory: its DN and a case-insensitive mapping of
    attribute name to list of values."""

    dn: str
    attributes: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)

    def __post_init__(self) -> None:
        """Normalize whatever mapping we were given."""
        normalized = CaseInsensitiveDict()
        for name, value in dict(self.attributes).items():
            values = normalize_values(value)
            if values:
                normalized[name] = values
        self.attributes = normalized

    def get_values(self, name: str) -> list[Any]:
        """Return the values of ``name`` or an empty list."""
        if name in self.attributes:
            return list(self.attributes[name])
        return []

    def replace(self, name: str, value: Any) -> None:
        """Replace all values of ``name``. An empty value removes it."""
        values = normalize_values(value)
        if values:
            self.attributes[name] = values
        elif name in self.attributes:
            del self.attributes[name]

    def copy(self) -> "DirectoryEntry":
        """Return an independent copy."""
        return DirectoryEntry(
            self.dn, {name: list(values) for name, values in self.attributes.items()}
        )
