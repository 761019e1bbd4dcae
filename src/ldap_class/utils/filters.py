"""This module builds search filters and distinguished names.

Values are always escaped with the ldap3 helpers: RFC 4515 for filter values
(``*``, ``(``, ``)``, ``\\`` and NUL) and RFC 4514 for RDN values (``,``, ``+``,
``"``, ``\\``, ``<``, ``>``, ``;``, ``=``, leading ``#`` or space, trailing space).
"""
import re
from typing import Any
from ldap3.utils.conv import escape_bytes, escape_filter_chars
from ldap3.utils.dn import escape_rdn, parse_dn
from ldap3.core.exceptions import LDAPInvalidDnError
from ldap_class.exceptions import ValidationError

_ESCAPE = re.compile(r"\\([0-9a-fA-F]{2}|.)")


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def eq(attribute: str, value: Any) -> str:
    """Equality filter.

    Examples
    --------
    >>> eq("cn", "R&D (old)")
    (cn=R&D \\28old\\29)
    """
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            # Binary values such as objectSID are matched byte by byte.
            return f"({attribute}={escape_bytes(value)})"
    return f"({attribute}={escape_filter_chars(_as_text(value))})"


def present(attribute: str) -> str:
    """Presence filter, e.g. ``(gidNumber=*)``."""
    return f"({attribute}=*)"


def and_(*filters: str) -> str:
    """Conjunction of already built filters. A single filter is returned as is."""
    if len(filters) == 1:
        return filters[0]
    return f"(&{''.join(filters)})"


def or_(*filters: str) -> str:
    """Disjunction of already built filters. A single filter is returned as is."""
    if len(filters) == 1:
        return filters[0]
    return f"(|{''.join(filters)})"


def not_(search_filter: str) -> str:
    """Negation of an already built filter."""
    return f"(!{search_filter})"


def rdn(attribute: str, value: Any) -> str:
    """Relative distinguished name with the value escaped.

    Examples
    --------
    >>> rdn("cn", "Doe, John")
    cn=Doe\\, John
    """
    return f"{attribute}={escape_rdn(_as_text(value))}"


def dn(*components: str) -> str:
    """Join already escaped RDNs/DN fragments, skipping empty ones.

    Examples
    --------
    >>> dn("uid=alice", "ou=eng", "", "ou=People,dc=example,dc=com")
    uid=alice,ou=eng,ou=People,dc=example,dc=com
    """
    return ",".join(component for component in components if component)


def _parse(distinguished_name: str, strip: bool = False) -> list[Any]:
    try:
        return parse_dn(distinguished_name, strip=strip)
    except LDAPInvalidDnError as exc:
        raise ValidationError(f"Invalid DN {distinguished_name!r}: {exc}") from exc


def split_dn(distinguished_name: str) -> tuple[str, str]:
    """Split a DN into its first RDN and the parent DN.

    Examples
    --------
    >>> split_dn("uid=alice,ou=eng,ou=People,dc=example,dc=com")
    ("uid=alice", "ou=eng,ou=People,dc=example,dc=com")
    """
    components = _parse(distinguished_name)
    if not components:
        raise ValidationError("Can not split an empty DN")
    first_attribute, first_value, _ = components[0]
    parent = ""
    for attribute, value, separator in components[1:]:
        parent += f"{attribute}={value}{separator}"
    return f"{first_attribute}={first_value}", parent


def unescape_value(value: str) -> str:
    """Undo RFC 4514 escaping of a single RDN value."""

    def replace(match: "re.Match[str]") -> str:
        escaped = match.group(1)
        if len(escaped) == 2:
            return chr(int(escaped, 16))
        return escaped

    return _ESCAPE.sub(replace, value)


def rdn_value(distinguished_name: str) -> str:
    """Return the unescaped value of the first RDN.

    Examples
    --------
    >>> rdn_value("CN=Doe\\, John,CN=Users,DC=example,DC=com")
    Doe, John
    """
    components = _parse(distinguished_name)
    if not components:
        raise ValidationError("Can not read the RDN of an empty DN")
    return unescape_value(components[0][1])


def same_dn(first: str, second: str) -> bool:
    """Compare two DNs, ignoring case and spacing around separators."""

    def canonical(value: str) -> list[tuple[str, str]]:
        return [
            (attribute.strip().lower(), unescape_value(raw.strip()).lower())
            for attribute, raw, _ in _parse(value, strip=True)
        ]

    return canonical(first) == canonical(second)
