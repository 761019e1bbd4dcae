"""This module is used to set up all the LDAP connections."""
import ssl
from loguru import logger
from typing import Any
from ldap3 import Server, Connection, Tls, core
from ldap3.core.exceptions import LDAPException
from ldap_class.exceptions import ConfigurationError, TransportError
from ldap_class.schema import SchemaVariant
from ldap_class.utils.ldap_wrapper import LdapInterface, NoOp, LdapWrapper

CONNECTION_WRAPPER_REFERENCE = {"noop": NoOp, "prod": LdapWrapper}


class LdapConnections:
    """This class is used to set up all the LDAP connections."""

    @staticmethod
    def _create_tls_object(
        basic_config: dict[str, Any], server_type: str
    ) -> core.tls.Tls:
        """Create the TLS object.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig.
        server_type :
            Either "ad" for MS AD or "posix" for an RFC 2307 server.
            This maps to the config section of the required server.

        Returns
        -------
        TLS object
            https://ldap3.readthedocs.io/en/latest/ssltls.html

        Raises
        ------
        ConfigurationError
            The ssl settings are missing or invalid.
        """
        server_config: dict[str, Any] = basic_config["config"][server_type]
        try:
            ssl_config = server_config["ssl"]
            return Tls(
                validate=getattr(ssl, ssl_config["validate"]),
                version=getattr(ssl, ssl_config["version"]),
                ciphers="ALL",
                ca_certs_file=ssl_config.get("ca_certs_file", None),
            )
        except (KeyError, AttributeError, TypeError, LDAPException) as exc:
            logger.error(f"Unable to create {server_type} TLS object:")
            logger.error(exc)
            raise ConfigurationError(f"{server_type}: invalid ssl settings: {exc}") from exc

    @staticmethod
    def _create_ldap_server_object(
        basic_config: dict[str, Any],
        tls_configuration: core.tls.Tls,
        server_type: str,
    ) -> core.server.Server:
        """Create the LDAP server object.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig
        tls_configuration :
            https://ldap3.readthedocs.io/en/latest/ssltls.html
        server_type :
            Either "ad" for MS AD or "posix" for an RFC 2307 server.

        Returns
        -------
        Server object
            https://ldap3.readthedocs.io/en/latest/server.html

        Raises
        ------
        ConfigurationError
            The server settings are missing or invalid.
        """
        server_config: dict[str, Any] = basic_config["config"][server_type]
        try:
            return Server(
                server_config["server"],
                port=server_config["port"],
                use_ssl=server_config["ssl"]["enabled"],
                tls=tls_configuration,
                get_info=server_config["get_info"],
            )
        except (KeyError, TypeError, LDAPException) as exc:
            logger.error(f"Unable to create {server_type} server object:")
            logger.error(exc)
            raise ConfigurationError(f"{server_type}: invalid server settings: {exc}") from exc

    @staticmethod
    def _create_ldap_connection_object(
        basic_config: dict[str, Any],
        ldap_server_object: core.server.Server,
        server_type: str,
    ) -> core.connection.Connection:
        """Create the LDAP connection object.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig
        ldap_server_object :
            https://ldap3.readthedocs.io/en/latest/server.html
        server_type :
            Either "ad" for MS AD or "posix" for an RFC 2307 server.

        Returns
        -------
        LDAP Connection object
            https://ldap3.readthedocs.io/en/latest/connection.html

        Raises
        ------
        ConfigurationError
            The bind settings are missing or invalid.
        """
        server_config: dict[str, Any] = basic_config["config"][server_type]
        try:
            return Connection(
                ldap_server_object,
                user=server_config["bind_user"],
                password=server_config["bind_pass"],
            )
        except (KeyError, LDAPException) as exc:
            logger.error(f"Unable to create {server_type} connection object:")
            logger.error(exc)
            raise ConfigurationError(f"{server_type}: invalid bind settings: {exc}") from exc

    def _bind_to_ldap(
        self, basic_config: dict[str, Any], server_type: str
    ) -> LdapInterface:
        """Bind to the relevant LDAP server.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig
        server_type :
            Either "ad" for MS AD or "posix" for an RFC 2307 server.

        Returns
        -------
        The bound connection, wrapped for the configured environment.
            https://ldap3.readthedocs.io/en/latest/bind.html

        Raises
        ------
        TransportError
            The bind failed.
        """
        tls_object = self._create_tls_object(basic_config, server_type)
        ldap_server_object = self._create_ldap_server_object(
            basic_config, tls_object, server_type
        )
        ldap_connection_object = self._create_ldap_connection_object(
            basic_config, ldap_server_object, server_type
        )
        try:
            ldap_connection_object.bind()
        except LDAPException as exc:
            logger.error("Unable to bind:")
            logger.error(exc)
            raise TransportError(
                getattr(exc, "result", None), f"{server_type}: bind failed: {exc}"
            ) from exc
        return CONNECTION_WRAPPER_REFERENCE[basic_config["environment"]](
            ldap_connection_object,
            basic_config,
        )

    def setup_ldap_connections(
        self, basic_config: dict[str, Any]
    ) -> dict[str, LdapInterface]:
        """Main function of the class.

        Binds to every server configured (``posix`` and/or ``ad``).

        Raises
        ------
        ConfigurationError
            No server is configured.
        TransportError
            A bind did not succeed.
        """
        server_types = [
            variant.value
            for variant in SchemaVariant
            if basic_config["config"].get(variant.value)
        ]
        if not server_types:
            raise ConfigurationError("No 'posix' or 'ad' section in configuration")
        connections = {
            server_type: self._bind_to_ldap(basic_config, server_type)
            for server_type in server_types
        }
        failed = {
            server_type: connection.result
            for server_type, connection in connections.items()
            if (connection.result or {}).get("result") != 0
        }
        if failed:
            logger.error("One or more Ldap connections failed")
            for server_type, result in failed.items():
                logger.error(f"{server_type}: {result}")
            first = next(iter(failed.values())) or {}
            raise TransportError(
                first.get("result"), f"Bind failed for {', '.join(failed)}"
            )
        return connections
