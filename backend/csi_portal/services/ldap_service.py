"""
LDAP Service - bind/search/bind authentication against the corporate directory

1. Bind with the service account and search ``(uid=<username>)`` under LDAP_BASE_DN
2. Re-bind as the user's DN with the supplied password
3. Retry up to LDAP_MAX_RETRIES times on transient network errors
"""

import asyncio
from typing import Any, Dict, Optional

from ldap3 import NONE, SUBTREE, Connection, Server
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPCommunicationError,
    LDAPException,
    LDAPResponseTimeoutError,
)
from ldap3.utils.conv import escape_filter_chars

from csi_portal.core.config import settings
from csi_portal.core.logging_config import logger

SEARCH_ATTRIBUTES = ["uid", "cn", "displayName", "mail", "email"]

# Errors worth another attempt: server down, connection refused, timeouts
RETRYABLE_ERRORS = (LDAPCommunicationError, LDAPResponseTimeoutError)


class LDAPUserNotFoundError(LDAPException):
    """Search under the base DN returned no entry"""


def _first(values: Any) -> Optional[str]:
    if isinstance(values, (list, tuple)):
        return str(values[0]) if values else None
    return str(values) if values else None


class LDAPService:
    """Directory authentication with retry on transient failures"""

    def __init__(self):
        self.url = settings.LDAP_URL
        self.base_dn = settings.LDAP_BASE_DN
        self.bind_dn = settings.LDAP_BIND_DN
        self.bind_password = settings.LDAP_BIND_PASSWORD
        self.timeout = settings.LDAP_TIMEOUT
        self.max_retries = settings.LDAP_MAX_RETRIES
        self.retry_delay = settings.LDAP_RETRY_DELAY

    def _server(self) -> Server:
        return Server(self.url, connect_timeout=self.timeout, get_info=NONE)

    def _connect(self, user: Optional[str], password: Optional[str]) -> Connection:
        # auto_bind raises LDAPBindError on rejected credentials
        return Connection(
            self._server(),
            user=user,
            password=password,
            auto_bind=True,
            receive_timeout=self.timeout,
            raise_exceptions=False,
        )

    def _search_user(self, username: str) -> Dict[str, Any]:
        conn = self._connect(self.bind_dn or None, self.bind_password or None)
        try:
            conn.search(
                self.base_dn,
                f"(uid={escape_filter_chars(username)})",
                search_scope=SUBTREE,
                attributes=SEARCH_ATTRIBUTES,
            )
            if not conn.entries:
                raise LDAPUserNotFoundError("User not found")
            entry = conn.entries[0]
            return {"dn": entry.entry_dn, **entry.entry_attributes_as_dict}
        finally:
            conn.unbind()

    @staticmethod
    def _normalize(username: str, entry: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "username": _first(entry.get("uid")) or username,
            "display_name": _first(entry.get("displayName")) or _first(entry.get("cn")) or username,
            "email": _first(entry.get("mail")) or _first(entry.get("email")) or "",
            "dn": entry.get("dn"),
        }

    def _authenticate_once(self, username: str, password: str) -> Dict[str, Any]:
        entry = self._search_user(username)
        user_conn = self._connect(entry["dn"], password)
        user_conn.unbind()
        return self._normalize(username, entry)

    @staticmethod
    def error_message(error: Exception) -> str:
        """User facing message for the last failure"""
        if isinstance(error, LDAPBindError):
            return "Invalid username or password"
        if isinstance(error, LDAPUserNotFoundError):
            return "User not found"
        if isinstance(error, RETRYABLE_ERRORS):
            return "LDAP server unavailable, please try again later"
        return "Authentication failed"

    async def authenticate(self, username: str, password: str) -> Dict[str, Any]:
        """
        Returns ``{"success", "user", "error_message"}``; never raises for
        directory errors so the auth service can report them uniformly.
        """
        if not username or not password:
            return {"success": False, "user": None, "error_message": "Username and password are required"}

        last_error: Optional[Exception] = None
        attempt = 0
        while attempt < self.max_retries:
            attempt += 1
            try:
                logger.info(f"[LDAP] Authentication attempt {attempt} for {username}")
                user = await asyncio.to_thread(self._authenticate_once, username, password)
                logger.log_auth_event("ldap_bind", True, username=username)
                return {"success": True, "user": user, "error_message": None}
            except LDAPException as e:
                last_error = e
                logger.warning(f"[LDAP] Attempt {attempt} failed for {username}: {e}")
                if not isinstance(e, RETRYABLE_ERRORS) or attempt >= self.max_retries:
                    break
                await asyncio.sleep(self.retry_delay * attempt)

        message = self.error_message(last_error)
        logger.log_auth_event("ldap_bind", False, username=username, reason=message, attempts=attempt)
        return {"success": False, "user": None, "error_message": message}

    async def get_user_attributes(self, username: str) -> Dict[str, Any]:
        """Look up a directory entry with the service account"""
        entry = await asyncio.to_thread(self._search_user, username)
        return self._normalize(username, entry)

    async def test_connection(self) -> Dict[str, Any]:
        """Check that the service account can bind"""
        def _bind():
            self._connect(self.bind_dn or None, self.bind_password or None).unbind()

        try:
            await asyncio.to_thread(_bind)
            return {"success": True, "message": "LDAP connection successful"}
        except LDAPException as e:
            logger.error(f"[LDAP] Connection test failed: {e}")
            return {"success": False, "message": self.error_message(e)}


ldap_service = LDAPService()
