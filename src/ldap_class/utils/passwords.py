"""This module holds the password strategies used by the user models.

Each strategy is a plain function so a model can swap it for another one.
"""
import base64
import hashlib
import secrets
import string
from loguru import logger

RANDOM_CHARACTERS = string.ascii_letters + string.digits + "./"


def random_string(length: int = 10, alphabet: str = RANDOM_CHARACTERS) -> str:
    """Generate a random string suitable as an initial password.

    Examples
    --------
    >>> random_string(8)
    6JQMApbY
    """
    return "".join(secrets.choice(alphabet) for _ in range(length))


def ssha_hash(password: str | bytes, salt: bytes | None = None) -> str:
    """Hash a password the way OpenLDAP stores ``{SSHA}`` values.

    Values already hashed are returned untouched.

    Examples
    --------
    >>> ssha_hash("secret", salt=b"12345678")
    {SSHA}...
    """
    if isinstance(password, bytes):
        password = password.decode("utf-8")
    if not password:
        raise ValueError("A password is required")
    if password.startswith("{SSHA}"):
        return password
    salt = salt if salt is not None else secrets.token_bytes(8)
    digest = hashlib.sha1(password.encode("utf-8") + salt).digest()  # nosec B324
    return "{SSHA}" + base64.b64encode(digest + salt).decode("ascii")


def check_ssha(password: str, hashed: str | bytes) -> bool:
    """Check ``password`` against an ``{SSHA}`` value."""
    if isinstance(hashed, bytes):
        hashed = hashed.decode("ascii")
    if not hashed.startswith("{SSHA}"):
        logger.warning("Not an SSHA value, can not check it")
        return False
    raw = base64.b64decode(hashed[len("{SSHA}") :])
    digest, salt = raw[:20], raw[20:]
    return hashlib.sha1(password.encode("utf-8") + salt).digest() == digest  # nosec


def encode_ad_password(password: str | bytes) -> bytes:
    """Encode a password for the Active Directory ``unicodePwd`` attribute:
    the password in double quotes, UTF-16LE encoded.

    Values that are already encoded are returned untouched.

    Examples
    --------
    >>> encode_ad_password("secret")
    b'"\\x00s\\x00e\\x00c\\x00r\\x00e\\x00t\\x00"\\x00'
    """
    if isinstance(password, bytes):
        if password.startswith('"'.encode("utf-16-le")) and len(password) % 2 == 0:
            return password
        password = password.decode("utf-8")
    if not password:
        raise ValueError("A password is required")
    return f'"{password}"'.encode("utf-16-le")
