"""Credentials and connection parameters.

:class:`ConnectionParameters` is what a :class:`~acc_client.client.Client`
is created from: the server endpoint, one :class:`Credentials` variant and
the :class:`~acc_client.config.ClientConfig` options. Build it with one of
the ``of_*`` factories::

    params = ConnectionParameters.of_user_and_password(
        "https://acc.example.com", "admin", "secret", ClientConfig(option_cache_ttl=60)
    )

:meth:`ConnectionParameters.of_external_account` derives the parameters
from a mid-sourcing external account configured on another server.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Optional

from . import caster
from .config import ClientConfig
from .crypto import Cipher
from .errors import CampaignError, ErrorCode

logger = logging.getLogger(__name__)

USER_PASSWORD = "UserPassword"
SESSION_TOKEN = "SessionToken"
SECURITY_TOKEN = "SecurityToken"
BEARER_TOKEN = "BearerToken"
ANONYMOUS_USER = "AnonymousUser"

CREDENTIAL_TYPES = (USER_PASSWORD, SESSION_TOKEN, SECURITY_TOKEN, BEARER_TOKEN, ANONYMOUS_USER)

# nms:extAccount/@type of mid-sourcing accounts
EXT_ACCOUNT_TYPE_MID_SOURCING = 3


@dataclass(frozen=True)
class Credentials:
    """One credential variant; only the fields relevant to ``type`` are set."""

    type: str
    session_token: str = ""
    security_token: str = ""
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    bearer_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.type not in CREDENTIAL_TYPES:
            raise CampaignError(
                f"Invalid credentials type '{self.type}'",
                ErrorCode.INVALID_CREDENTIALS_TYPE,
            )

    def get_user(self) -> str:
        return self.user or ""


@dataclass(frozen=True)
class ConnectionParameters:
    endpoint: str
    credentials: Credentials
    options: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def of_user_and_password(
        cls, endpoint: str, user: str, password: str, options: Optional[ClientConfig] = None
    ) -> "ConnectionParameters":
        credentials = Credentials(USER_PASSWORD, user=user, password=password)
        return cls(endpoint, credentials, options or ClientConfig())

    @classmethod
    def of_bearer_token(
        cls, endpoint: str, bearer_token: str, options: Optional[ClientConfig] = None
    ) -> "ConnectionParameters":
        credentials = Credentials(BEARER_TOKEN, bearer_token=bearer_token)
        return cls(endpoint, credentials, options or ClientConfig())

    @classmethod
    def of_session_token(
        cls, endpoint: str, session_token: str, options: Optional[ClientConfig] = None
    ) -> "ConnectionParameters":
        credentials = Credentials(SESSION_TOKEN, session_token=session_token)
        return cls(endpoint, credentials, options or ClientConfig())

    @classmethod
    def of_security_token(
        cls, endpoint: str, security_token: str, options: Optional[ClientConfig] = None
    ) -> "ConnectionParameters":
        credentials = Credentials(SECURITY_TOKEN, security_token=security_token)
        return cls(endpoint, credentials, options or ClientConfig())

    @classmethod
    def of_anonymous_user(cls, endpoint: str, options: Optional[ClientConfig] = None) -> "ConnectionParameters":
        return cls(endpoint, Credentials(ANONYMOUS_USER), options or ClientConfig())

    @classmethod
    async def of_external_account(
        cls, client: Any, name: str, options: Optional[ClientConfig] = None
    ) -> "ConnectionParameters":
        """Connection parameters of the mid-sourcing external account ``name``.

        The account is read through ``client`` (which must be logged on) and
        its password is decrypted with the server's ``XtkSecretKey`` option.
        """
        if not name:
            raise CampaignError(
                "Cannot find external account: no account name was given",
                ErrorCode.BAD_EXTERNAL_ACCOUNT,
            )
        query = ET.Element("queryDef")
        query.set("schema", "nms:extAccount")
        query.set("operation", "get")
        select = ET.SubElement(query, "select")
        for expr in ("@name", "@account", "@password", "@server", "@type"):
            ET.SubElement(select, "node").set("expr", expr)
        where = ET.SubElement(query, "where")
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        ET.SubElement(where, "condition").set("expr", f"@name='{escaped}'")

        account = await client.invoke_internal("xtk:queryDef", "ExecuteQuery", [], instance=query)
        if account is None:
            raise CampaignError(
                f"Cannot find external account '{name}'", ErrorCode.BAD_EXTERNAL_ACCOUNT
            )
        account_type = caster.as_short(account.get("type"))
        if account_type != EXT_ACCOUNT_TYPE_MID_SOURCING:
            raise CampaignError(
                f"Cannot use external account '{name}': type {account_type} is not mid-sourcing",
                ErrorCode.BAD_EXTERNAL_ACCOUNT,
            )
        secret_key = await client.get_option("XtkSecretKey")
        password = Cipher(secret_key).decrypt_password(account.get("password", ""))
        logger.debug(f"Using external account '{name}' on {account.get('server')}")
        return cls.of_user_and_password(
            account.get("server", ""),
            account.get("account", ""),
            password,
            options or client.connection_parameters.options,
        )
