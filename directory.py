"""Account directory backed by LDAP / Active Directory.

Login binds with the service account, looks the user up by
``ldap_user_attribute``, re-binds as the user to check the password and
finally collects the groups whose ``member`` is the user's DN.
"""
import logging
from typing import List, Optional

from ldap3 import SUBTREE, SYNC, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth import DirectoryUser
from config import AuthConfig

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """The directory could not be queried (unreachable, or the service bind failed)."""


def _first(value) -> str:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)


class LdapDirectory:
    def __init__(self, config: AuthConfig, server: Optional[Server] = None, client_strategy=SYNC):
        self.config = config
        self.server = server or Server(config.ldap_url)
        self.client_strategy = client_strategy

    def _connection(self, user: str, password: str) -> Connection:
        return Connection(self.server, user=user, password=password, client_strategy=self.client_strategy)

    def _service_connection(self) -> Connection:
        connection = self._connection(self.config.ldap_bind_dn, self.config.ldap_bind_password)
        try:
            bound = connection.bind()
        except LDAPException as e:
            raise DirectoryError(f"LDAP server not reachable: {e}") from e
        if not bound:
            logger.error(f"LDAP service bind failed: {connection.result}")
            raise DirectoryError("Failed to bind with service account")
        return connection

    def _search(self, connection: Connection, search_filter: str, attributes: List[str]) -> list:
        connection.search(self.config.ldap_base_dn, search_filter, search_scope=SUBTREE, attributes=attributes)
        return [entry for entry in connection.response or [] if entry.get("type") == "searchResEntry"]

    def authenticate(self, username: str, password: str) -> Optional[DirectoryUser]:
        # an empty password would be an anonymous bind and always succeed
        if not username or not password:
            return None

        service = self._service_connection()
        try:
            search_filter = f"({self.config.ldap_user_attribute}={escape_filter_chars(username)})"
            entries = self._search(service, search_filter, ["displayName", "mail"])
            if not entries:
                logger.info(f"LDAP user {username} not found")
                return None

            entry = entries[0]
            user_dn = entry["dn"]
            user_connection = self._connection(user_dn, password)
            if not user_connection.bind():
                logger.info(f"LDAP bind failed for {username}")
                return None
            user_connection.unbind()

            groups = []
            for group in self._search(service, f"(member={escape_filter_chars(user_dn)})", ["cn"]):
                groups.append(group["dn"])
                cn = _first(group.get("attributes", {}).get("cn"))
                if cn:
                    groups.append(cn)
        finally:
            service.unbind()

        attributes = entry.get("attributes", {})
        return DirectoryUser(
            username=username,
            display_name=_first(attributes.get("displayName")),
            mail=_first(attributes.get("mail")),
            groups=groups,
        )
