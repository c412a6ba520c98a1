"""Session state, login handshakes and the SOAP/HTTP send loop.

The :class:`SessionManager` owns the credential state of a client. It logs
on with the handshake of the configured credential variant, stamps every
outgoing request with the current tokens and the SDK headers, notifies
observers, and recovers from an expired session: when the server answers
``XSV-350008`` it asks the ``refresh_client`` callback for a freshly
logged-on client, adopts its tokens and replays the call once.
"""

from __future__ import annotations

import enum
import inspect
import logging
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from . import dom
from ._version import SDK_NAME, __version__
from .credentials import (
    ANONYMOUS_USER,
    BEARER_TOKEN,
    SECURITY_TOKEN,
    SESSION_TOKEN,
    USER_PASSWORD,
    ConnectionParameters,
)
from .errors import CampaignError, ErrorCode, transport_failure
from .observers import ObserverRegistry
from .soap import CallContext, SoapMethodCall
from .transport import HttpRequest, HttpxTransport, TransportError

logger = logging.getLogger(__name__)

USER_AGENT = f"{SDK_NAME}/{__version__}"


class SessionState(enum.Enum):
    LOGGED_OUT = "LoggedOut"
    LOGGING_ON = "LoggingOn"
    LOGGED_ON = "LoggedOn"
    REFRESHING = "Refreshing"
    FAILED = "Failed"


class SessionManager:
    """Credential state and network round trips of one client.

    Args:
        connection_parameters: Endpoint, credentials and options.
        observers: Registry notified around every call.
        client: Owning client, handed to ``refresh_client``.
    """

    def __init__(
        self,
        connection_parameters: ConnectionParameters,
        observers: Optional[ObserverRegistry] = None,
        client: Any = None,
    ) -> None:
        self.connection_parameters = connection_parameters
        self.config = connection_parameters.options
        self.credentials = connection_parameters.credentials
        self.observers = observers if observers is not None else ObserverRegistry()
        self.client = client
        self.transport: Callable[..., Any] = self.config.transport or HttpxTransport(timeout=self.config.timeout)
        self.session_token = self.credentials.session_token
        self.security_token = self.credentials.security_token
        self.session_info_element: Optional[ET.Element] = None
        self.state = SessionState.LOGGED_OUT

    @property
    def endpoint(self) -> str:
        return self.connection_parameters.endpoint

    def is_logged(self) -> bool:
        if self.credentials.type == ANONYMOUS_USER:
            return True
        return self.state in (SessionState.LOGGED_ON, SessionState.REFRESHING)

    # ---------------- Headers & options -----------------
    def sdk_headers(self) -> Dict[str, str]:
        """Headers sent with every request, before method-level headers."""
        headers: Dict[str, str] = {}
        client_app = self.config.client_app
        if not self.config.no_sdk_headers:
            headers["ACC-SDK-Version"] = f"{SDK_NAME} {__version__}"
            headers["ACC-SDK-Auth"] = f"{self.credentials.type} {self.credentials.get_user()}"
            if client_app:
                headers["ACC-SDK-Client-App"] = client_app
        source = f"{SDK_NAME} {__version__}"
        if client_app:
            source = f"{source},{client_app}"
        headers["X-Query-Source"] = source
        headers.update(self.config.extra_http_headers)
        return headers

    def request_options(self, push_down: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options: Dict[str, Any] = {"timeout": self.config.timeout, "charset": self.config.charset}
        options.update(self.config.push_down)
        options.update(push_down or {})
        return options

    def new_soap_call(
        self, urn: str, method_name: str, extra_headers: Optional[Dict[str, str]] = None
    ) -> SoapMethodCall:
        headers = self.sdk_headers()
        headers.update(extra_headers or {})
        return SoapMethodCall(
            urn,
            method_name,
            session_token=self.session_token,
            security_token=self.security_token,
            user_agent=USER_AGENT,
            extra_headers=headers,
        )

    # ---------------- Logon / logoff -----------------
    async def logon(self) -> None:
        """Run the handshake of the credential variant."""
        credentials = self.credentials
        if credentials.type == ANONYMOUS_USER:
            self.state = SessionState.LOGGED_ON
            return
        if credentials.type in (SESSION_TOKEN, SECURITY_TOKEN):
            self.session_token = credentials.session_token
            self.security_token = credentials.security_token
            self.session_info_element = None
            self.state = SessionState.LOGGED_ON
            return

        self.state = SessionState.LOGGING_ON
        self.session_token = ""
        self.security_token = ""
        try:
            if credentials.type == USER_PASSWORD:
                call = self.new_soap_call("xtk:session", "Logon")
                call.write_string("login", credentials.user or "")
                call.write_string("password", credentials.password or "")
                call.write_element("parameters", None)
            else:
                call = self.new_soap_call("xtk:session", "BearerTokenLogon")
                call.write_string("bearerToken", credentials.bearer_token or "")
            context = CallContext(schema_id="xtk:session", method_name=call.method_name)
            session_token, session_info, security_token = await self.send_soap(
                call, context, read=_read_logon, retry=False, check_logged=False
            )
            _check_logon(call.full_name, session_token, session_info, security_token)
        except BaseException:
            self.state = SessionState.LOGGED_OUT
            raise
        self.session_token = session_token
        self.security_token = security_token
        self.session_info_element = session_info
        self.state = SessionState.LOGGED_ON
        logger.info(f"Logged on to {self.endpoint} as {self.user_login or credentials.type}")

    async def logoff(self) -> None:
        """End the session; calling it again, or while logged out, does nothing."""
        if self.credentials.type == ANONYMOUS_USER:
            return
        try:
            if self.state == SessionState.LOGGED_ON and self.credentials.type in (
                USER_PASSWORD,
                BEARER_TOKEN,
                SECURITY_TOKEN,
            ):
                call = self.new_soap_call("xtk:session", "Logoff")
                context = CallContext(schema_id="xtk:session", method_name="Logoff")
                await self.send_soap(call, context, retry=False)
        finally:
            self.session_token = ""
            self.security_token = ""
            self.session_info_element = None
            self.state = SessionState.LOGGED_OUT

    # ---------------- Session info -----------------
    def session_info(self, representation: Optional[str] = None) -> Any:
        return dom.to_representation(self.session_info_element, representation or self.config.representation)

    @property
    def server_info(self) -> Optional[ET.Element]:
        return dom.find_element(self.session_info_element, "serverInfo")

    @property
    def user_info(self) -> Optional[ET.Element]:
        return dom.find_element(self.session_info_element, "userInfo")

    @property
    def build_number(self) -> Optional[str]:
        server_info = self.server_info
        return server_info.get("buildNumber") if server_info is not None else None

    @property
    def user_login(self) -> Optional[str]:
        user_info = self.user_info
        return user_info.get("login") if user_info is not None else None

    def adopt(self, other: "SessionManager") -> None:
        """Take over the credentials of another (freshly logged-on) session."""
        self.session_token = other.session_token
        self.security_token = other.security_token
        self.session_info_element = other.session_info_element
        self.state = SessionState.LOGGED_ON

    async def _refresh(self) -> None:
        refresh_client = self.config.refresh_client
        self.state = SessionState.REFRESHING
        logger.info(f"Session expired on {self.endpoint}, refreshing client")
        try:
            new_client = refresh_client(self.client)
            if inspect.isawaitable(new_client):
                new_client = await new_client
        except BaseException:
            self.state = SessionState.FAILED
            raise
        self.adopt(new_client.session if hasattr(new_client, "session") else new_client)

    # ---------------- Send -----------------
    def _wrap_transport_error(self, call: SoapMethodCall, error: Exception) -> CampaignError:
        body = getattr(error, "body", None)
        if isinstance(error, TransportError) and body and "Fault>" in body:
            try:
                call.parse_response(body)
            except CampaignError as fault:
                if fault.error_code != ErrorCode.UNEXPECTED_RESPONSE:
                    return fault
        return transport_failure(call.full_name, error)

    async def _round_trip(self, call: SoapMethodCall, context: CallContext, options: Dict[str, Any]):
        request = call.build_request(self.endpoint, options)
        context.request = request
        await self.observers.notify("on_soap_call", context)
        try:
            body = await self.transport(request)
        except CampaignError:
            raise
        except Exception as e:
            raise self._wrap_transport_error(call, e) from e
        context.response = body
        call.parse_response(body)

    async def send_soap(
        self,
        call: SoapMethodCall,
        context: CallContext,
        options: Optional[Dict[str, Any]] = None,
        read: Optional[Callable[[SoapMethodCall], Any]] = None,
        retry: bool = True,
        check_logged: bool = True,
    ) -> Any:
        """Send ``call``, retrying once through ``refresh_client`` on session expiry.

        Returns whatever ``read`` extracts from the parsed response, which is
        also what observers receive in ``on_soap_call_success``.
        """
        if check_logged and not self.is_logged():
            raise CampaignError(
                f"Cannot call method '{call.full_name}': client is not logged on",
                ErrorCode.NOT_LOGGED,
                400,
                call.full_name,
            )
        request_options = self.request_options(options)
        refreshed = False
        while True:
            try:
                await self._round_trip(call, context, request_options)
                result = read(call) if read is not None else None
            except CampaignError as error:
                if retry and error.is_session_expired() and self.config.refresh_client is not None:
                    if refreshed:
                        exhausted = CampaignError(
                            f"Session expired again after refreshing the client: {error.message}",
                            ErrorCode.RETRY_EXHAUSTED,
                            401,
                            call.full_name,
                            cause=error,
                        )
                        self.state = SessionState.FAILED
                        await self.observers.notify("on_soap_call_failure", context, exhausted)
                        raise exhausted from error
                    refreshed = True
                    await self._refresh()
                    call.update_tokens(self.session_token, self.security_token)
                    continue
                await self.observers.notify("on_soap_call_failure", context, error)
                raise
            await self.observers.notify("on_soap_call_success", context, result)
            return result

    async def send_http(self, request: HttpRequest) -> str:
        """Plain HTTP call (ping, test...) with observer notifications."""
        await self.observers.notify("on_http_call", request)
        try:
            body = await self.transport(request)
        except CampaignError as error:
            await self.observers.notify("on_http_call_failure", request, error)
            raise
        except Exception as e:
            error = transport_failure(urlparse(request.url).path, e)
            await self.observers.notify("on_http_call_failure", request, error)
            raise error from e
        await self.observers.notify("on_http_call_success", request, body)
        return body


def _read_logon(call: SoapMethodCall):
    session_token = call.get_next_string()
    session_info = call.get_next_element()
    security_token = call.get_next_string()
    call.check_no_more_args()
    return session_token, session_info, security_token


def _check_logon(method_name: str, session_token: str, session_info: Optional[ET.Element], security_token: str) -> None:
    if not session_token:
        raise CampaignError(
            "Authentication failed: missing session token", ErrorCode.MISSING_SESSION_TOKEN, 401, method_name
        )
    if session_info is None or dom.find_element(session_info, "userInfo") is None:
        raise CampaignError(
            "Authentication failed: missing user info", ErrorCode.MISSING_USER_INFO, 401, method_name
        )
    if not security_token:
        raise CampaignError(
            "Authentication failed: missing security token", ErrorCode.MISSING_SECURITY_TOKEN, 401, method_name
        )
