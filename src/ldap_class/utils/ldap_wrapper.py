"""This module is the directory transport: a narrow interface over LDAP3."""
import json
from datetime import datetime
from loguru import logger
from typing import Any
from ldap3 import Connection, SUBTREE, ALL_ATTRIBUTES, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException
from ldap_class.entry import DirectoryEntry, normalize_values
from ldap_class.exceptions import ConfigurationError, TransportError
from ldap_class.utils.filters import split_dn

NO_SUCH_OBJECT = 32


class LdapInterface:
    """LDAP Interface class.

    The five operations the rest of the package needs from a directory. Every
    write either succeeds or raises ``TransportError``.
    """

    def __init__(
        self, ldap_connection: Connection, basic_config: dict[str, Any] | None = None
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config or {}
        settings = self.basic_config.get("config", {}).get("settings", {}) or {}
        self.manifest_path: str | None = settings.get("manifest_path")
        self.ldap_connection: Connection = (
            ldap_connection  # This is an active bound connection!
        )

    @property  # pragma: no cover
    def response(self) -> Any:
        """Setting response."""
        return self.ldap_connection.response

    @property  # pragma: no cover
    def result(self) -> Any:
        """Setting result."""
        return self.ldap_connection.result

    def unbind(self) -> None:
        """As specified in RFC4511 the Unbind operation must be tought as the
        "disconnect" operation. It’s name (and that of its Bind counterpart) is for
        historical reason."""
        raise NotImplementedError

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = SUBTREE,
        attributes: Any = None,
    ) -> list[DirectoryEntry]:
        """The Search operation is used to request a server to return, subject to access
        controls and other restrictions, a set of entries matching a search filter. This
        can be used to read attributes from a single entry, from entries immediately
        subordinate to a particular entry, or from a whole subtree of entries.

        A missing search base is not an error: it simply has no entries.
        """
        raise NotImplementedError

    def add(self, dn: str, attributes: dict[str, Any]) -> None:
        """The Add operation allows a client to request the addition of an entry into
        the LDAP directory. The Add operation is used only for new entries, that is the
        dn must reference a non-existent object, but the parent objects must exist.
        """
        raise NotImplementedError

    def delete(self, dn: str) -> None:
        """The Delete operation allows a client to request the removal of an entry from
        the LDAP directory.
        """
        raise NotImplementedError

    def modify(self, dn: str, replacements: dict[str, Any]) -> None:
        """The Modify operation allows a client to request the modification of an entry
        already present in the LDAP directory. Every value replaces the attribute;
        ``None`` removes it.
        """
        raise NotImplementedError

    def move(self, dn: str, new_dn: str) -> None:
        """The ModifyDN operation allows a client to change the Relative Distinguished
        Name (RDN) of an entry or to move an entry in the LDAP directory.
        """
        raise NotImplementedError

    def check_manifest(self) -> None:
        """Make sure the manifest can be appended to, before anything is written
        to the directory.

        Raises
        ------
        ConfigurationError
            The manifest can not be opened.
        """
        if not self.manifest_path:
            return
        try:
            with open(self.manifest_path, "a"):
                pass
        except OSError as exc:
            logger.error("Unable to open file:")
            logger.error(exc)
            raise ConfigurationError(
                f"Manifest {self.manifest_path} is not writable: {exc}"
            ) from exc

    def write_manifest(self, manifest_data: dict[str, Any]) -> None:
        """Append a write to the manifest, if one is configured.

        The write it records has already reached the server, so a failure here
        is logged and not raised. Byte values are not JSON serializable, so the
        data is stringified first.
        """
        if not self.manifest_path:
            return
        try:
            with open(self.manifest_path, "a") as f:
                f.write(f"{json.dumps(str(manifest_data))}\n")
        except OSError as exc:
            logger.error(f"Unable to write to manifest {self.manifest_path}: {exc}")
            logger.error(f"Unrecorded write: {manifest_data}")

    @staticmethod
    def _build_modification(replacements: dict[str, Any]) -> dict[str, Any]:
        """Turn ``{attr: value}`` into the LDAP3 changes format.

        A replace with no values removes the attribute without failing when it is
        already absent.

        Examples
        --------
        >>> self._build_modification({"gidNumber": 1000, "description": None})
        {"gidNumber": [("MODIFY_REPLACE", ["1000"])], "description": [("MODIFY_REPLACE", [])]}
        """
        return {
            attribute: [(MODIFY_REPLACE, normalize_values(value))]
            for attribute, value in replacements.items()
        }


class LdapWrapper(LdapInterface):
    """The transport used against a real server."""

    def _check_result(self, operation: str, dn: str) -> None:
        """Raise ``TransportError`` unless the last operation succeeded."""
        result = self.ldap_connection.result or {}
        if result.get("result", 0) != 0:
            logger.error(f"{dn}: {operation} failed: {result}")
            raise TransportError(
                result.get("result"),
                f"{operation} {dn}: {result.get('description', '')} "
                f"{result.get('message', '')}".strip(),
            )

    def _call(self, operation: str, dn: str, *args: Any, **kwargs: Any) -> Any:
        """Run an LDAP3 connection method, turning exceptions into
        ``TransportError``."""
        try:
            return getattr(self.ldap_connection, operation)(*args, **kwargs)
        except LDAPException as exc:
            logger.error(f"{dn}: {operation} raised {exc!r}")
            raise TransportError(
                getattr(exc, "result", None), f"{operation} {dn}: {exc}"
            ) from exc

    def unbind(self) -> None:
        """As specified in RFC4511 the Unbind operation must be tought as the
        "disconnect" operation. It’s name (and that of its Bind counterpart) is for
        historical reason."""
        self._call("unbind", "")

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = SUBTREE,
        attributes: Any = None,
    ) -> list[DirectoryEntry]:
        """The Search operation is used to request a server to return, subject to access
        controls and other restrictions, a set of entries matching a search filter.

        Examples
        --------
        >>> self.search("ou=Group,dc=example,dc=com", "(cn=hr)")
        [
            DirectoryEntry(
                dn="cn=hr,ou=Group,dc=example,dc=com",
                attributes={"cn": ["hr"], "gidNumber": ["123"], "memberUid": ["johnd"]},
            )
        ]
        """
        self._call(
            "search",
            search_base,
            search_base=search_base,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attributes or ALL_ATTRIBUTES,
        )
        result = self.ldap_connection.result or {}
        if result.get("result", 0) == NO_SUCH_OBJECT:
            return []
        self._check_result("search", search_base)
        return [
            DirectoryEntry(entry["dn"], dict(entry["attributes"]))
            for entry in self.ldap_connection.response or []
            if entry.get("type") == "searchResEntry"
        ]

    def add(self, dn: str, attributes: dict[str, Any]) -> None:
        """The Add operation allows a client to request the addition of an entry into
        the LDAP directory.
        """
        attributes = {
            name: normalize_values(value)
            for name, value in attributes.items()
            if normalize_values(value)
        }
        object_class = None
        for name in list(attributes):
            if name.lower() == "objectclass":
                object_class = attributes.pop(name)
        self.check_manifest()
        self._call("add", dn, dn, object_class=object_class, attributes=attributes)
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "add": [dn, object_class, attributes],
                "result": self.ldap_connection.result,
            }
        )
        self._check_result("add", dn)

    def delete(self, dn: str) -> None:
        """The Delete operation allows a client to request the removal of an entry from
        the LDAP directory.
        """
        self.check_manifest()
        self._call("delete", dn, dn)
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "delete": [dn],
                "result": self.ldap_connection.result,
            }
        )
        self._check_result("delete", dn)

    def modify(self, dn: str, replacements: dict[str, Any]) -> None:
        """The Modify operation allows a client to request the modification of an entry
        already present in the LDAP directory.
        """
        changes = self._build_modification(replacements)
        self.check_manifest()
        self._call("modify", dn, dn, changes)
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "modify": [dn, changes],
                "result": self.ldap_connection.result,
            }
        )
        self._check_result("modify", dn)

    def move(self, dn: str, new_dn: str) -> None:
        """The ModifyDN operation allows a client to change the Relative Distinguished
        Name (RDN) of an entry or to move an entry in the LDAP directory.
        """
        relative_dn, new_superior = split_dn(new_dn)
        _, old_superior = split_dn(dn)
        self.check_manifest()
        self._call(
            "modify_dn",
            dn,
            dn,
            relative_dn,
            delete_old_dn=True,
            new_superior=(
                None if new_superior.lower() == old_superior.lower() else new_superior
            ),
        )
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "move": [dn, new_dn],
                "result": self.ldap_connection.result,
            }
        )
        self._check_result("move", dn)


class NoOp(LdapInterface):
    """No-operation class for the LDAP connection.

    Searches hit the server, writes are only logged and report success.
    """

    def __init__(
        self, ldap_connection: Connection, basic_config: dict[str, Any] | None = None
    ) -> None:
        """Initialization of the class."""
        self._response: Any = getattr(ldap_connection, "response", None)
        self._result: dict[str, Any] | None = getattr(ldap_connection, "result", None)
        super().__init__(ldap_connection, basic_config)

    @property
    def response(self) -> Any:
        """Setting response."""
        return self._response

    @property
    def result(self) -> Any:
        """Setting result."""
        return self._result

    def _fake_success(self, response_type: str) -> None:
        self._response = None
        self._result = {
            "result": 0,
            "description": "success",
            "dn": "",
            "message": "",
            "referrals": None,
            "type": response_type,
        }

    def unbind(self) -> None:
        """Disconnect; the only call that still reaches the server besides search."""
        self.ldap_connection.unbind()

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = SUBTREE,
        attributes: Any = None,
    ) -> list[DirectoryEntry]:
        """The Search operation is used to request a server to return, subject to access
        controls and other restrictions, a set of entries matching a search filter.
        """
        self.ldap_connection.search(
            search_base=search_base,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attributes or ALL_ATTRIBUTES,
        )
        self._response = self.ldap_connection.response
        self._result = self.ldap_connection.result
        return [
            DirectoryEntry(entry["dn"], dict(entry["attributes"]))
            for entry in self._response or []
            if entry.get("type") == "searchResEntry"
        ]

    def add(self, dn: str, attributes: dict[str, Any]) -> None:
        """Pretend to add an entry."""
        logger.info(f"{dn}: Dry run, not adding {sorted(attributes)}")
        self._fake_success("addResponse")

    def delete(self, dn: str) -> None:
        """Pretend to delete an entry."""
        logger.info(f"{dn}: Dry run, not deleting")
        self._fake_success("delResponse")

    def modify(self, dn: str, replacements: dict[str, Any]) -> None:
        """Pretend to modify an entry."""
        logger.info(f"{dn}: Dry run, not replacing {sorted(replacements)}")
        self._fake_success("modifyResponse")

    def move(self, dn: str, new_dn: str) -> None:
        """Pretend to move an entry."""
        logger.info(f"{dn}: Dry run, not moving to {new_dn}")
        self._fake_success("modDNResponse")
