"""This module is used for ad-hoc utilities."""
from typing import Any
from loguru import logger
from ldap3.protocol.formatters.formatters import format_sid


def fill_array_gaps(numbers: list[int], offset: int) -> int:
    """Find a gap in an unsorted array of numbers with regards to the offset.

    Given a list of [200, 202, 190, 201, 204] and an offset of 200, return 203.

    If there are no gaps, the highest value + 1 will be returned so long as
    said value is greater than the offset.

    Parameters
    ----------
    numbers :
        A list of integers.
    offset :
        An integer.

    Returns
    -------
    An integer.
    """
    numbers.sort()
    while offset in numbers:
        offset += 1
    return offset


def collect_numbers(values: list[Any], attribute: str) -> list[int]:
    """Keep the numeric values of ``attribute`` found in search results.

    Parameters
    ----------
    values :
        Raw attribute values.
    attribute :
        Name of the attribute, only used for logging.

    Returns
    -------
    A list of integers.
    """
    numbers = []
    for value in values:
        try:
            numbers.append(int(value))
        except (TypeError, ValueError):
            logger.warning(f"Found an unexpected {attribute}: {value!r}")
    return numbers


def sid_to_string(sid: str | bytes) -> str:
    """Return the ``S-1-...`` form of a security identifier.

    Examples
    --------
    >>> sid_to_string(b"\\x01\\x05\\x00\\x00\\x00\\x00\\x00\\x05\\x15\\x00\\x00\\x00...")
    S-1-5-21-...-1105
    """
    if isinstance(sid, bytes):
        return str(format_sid(sid))
    return sid


def group_sid(user_sid: str | bytes, primary_group_id: int | str) -> str:
    """Derive the SID of a user's primary group.

    The group lives in the same domain as the user, so its SID is the user's
    SID with the last sub-authority (the RID) replaced by ``primaryGroupID``.

    Examples
    --------
    >>> group_sid("S-1-5-21-1004336348-1177238915-682003330-1105", 513)
    S-1-5-21-1004336348-1177238915-682003330-513
    """
    domain, _, _ = sid_to_string(user_sid).rpartition("-")
    return f"{domain}-{primary_group_id}"
