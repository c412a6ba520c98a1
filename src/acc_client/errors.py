"""Error type and stable error codes raised by the client engine.

Every failure surfaced by :mod:`acc_client` is a :class:`CampaignError`.
Local validation problems carry an ``SDK-xxxxxx`` code, server faults carry
the code found at the start of the SOAP fault string (for instance
``XSV-350008`` for an expired session).

Example::

    from acc_client.errors import CampaignError, ErrorCode

    try:
        await client.nlws.xtkSession.getOption("XtkDatabaseId")
    except CampaignError as e:
        if e.error_code == ErrorCode.NOT_LOGGED:
            await client.logon()
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

FAULT_CODE_PATTERN = re.compile(r"^\s*([A-Z]{3}-\d{6})")

SESSION_EXPIRED_CODE = "XSV-350008"


class ErrorCode:
    """Stable error codes for locally detected failures."""

    INVALID_CREDENTIALS_TYPE = "SDK-000000"
    BAD_PARAMETER = "SDK-000001"
    UNEXPECTED_RESPONSE = "SDK-000002"
    TRANSPORT_FAILURE = "SDK-000003"
    INVALID_REPRESENTATION = "SDK-000004"
    BAD_EXTERNAL_ACCOUNT = "SDK-000005"
    INVALID_ENUM = "SDK-000006"
    MISSING_SESSION_TOKEN = "SDK-000007"
    MISSING_SECURITY_TOKEN = "SDK-000008"
    MISSING_USER_INFO = "SDK-000009"
    NOT_LOGGED = "SDK-000010"
    SCHEMA_NOT_FOUND = "SDK-000011"
    RETRY_EXHAUSTED = "SDK-000012"
    METHOD_NOT_FOUND = "SDK-000013"
    NON_STATIC_WITHOUT_INSTANCE = "SDK-000014"
    UNSUPPORTED_PARAMETER_TYPE = "SDK-000015"
    UNSUPPORTED_RETURN_TYPE = "SDK-000016"
    MISSING_ROOT_NAME = "SDK-000017"


class CampaignError(Exception):
    """Failure of a client operation, local or remote.

    Attributes:
        status_code: HTTP-like status (400 for local validation, 500 for
            server faults and transport failures unless the transport
            reported a more specific one).
        error_code: ``SDK-xxxxxx`` for local errors, server code otherwise.
        message: Human readable description.
        method_name: ``urn#Method`` of the SOAP call or the URL path of a
            plain HTTP call, when known.
        fault_code / fault_string / detail: Verbatim SOAP fault fields.
        cause: Underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.BAD_PARAMETER,
        status_code: int = 400,
        method_name: Optional[str] = None,
        fault_code: Optional[str] = None,
        fault_string: Optional[str] = None,
        detail: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.method_name = method_name
        self.fault_code = fault_code
        self.fault_string = fault_string
        self.detail = detail
        self.cause = cause
        super().__init__(self._format())

    def _format(self) -> str:
        if self.method_name:
            return f"{self.status_code} - Error calling method '{self.method_name}': {self.message}"
        return f"{self.status_code} - Error: {self.message}"

    def __str__(self) -> str:
        return self._format()

    def is_session_expired(self) -> bool:
        """True when the server reported an expired or invalid session."""
        for text in (self.error_code, self.fault_string, self.message, self.detail):
            if text and SESSION_EXPIRED_CODE in text:
                return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "errorCode": self.error_code,
            "message": self.message,
            "methodName": self.method_name,
            "faultCode": self.fault_code,
            "faultString": self.fault_string,
            "detail": self.detail,
        }


def bad_parameter(message: str, method_name: Optional[str] = None) -> CampaignError:
    return CampaignError(message, ErrorCode.BAD_PARAMETER, 400, method_name)


def invalid_representation(representation: Any, method_name: Optional[str] = None) -> CampaignError:
    return CampaignError(
        f"Invalid representation '{representation}'",
        ErrorCode.INVALID_REPRESENTATION,
        400,
        method_name,
    )


def unexpected_response(message: str, method_name: Optional[str] = None) -> CampaignError:
    return CampaignError(message, ErrorCode.UNEXPECTED_RESPONSE, 500, method_name)


def soap_fault(
    method_name: str,
    fault_code: str,
    fault_string: str,
    detail: Optional[str] = None,
) -> CampaignError:
    """Build the error for a ``SOAP-ENV:Fault`` returned by the server."""
    match = FAULT_CODE_PATTERN.match(fault_string or "")
    error_code = match.group(1) if match else (fault_code or "")
    message = fault_string or fault_code or "SOAP fault"
    if detail:
        message = f"{message} ({detail})"
    return CampaignError(
        message,
        error_code,
        500,
        method_name,
        fault_code=fault_code,
        fault_string=fault_string,
        detail=detail,
    )


def transport_failure(
    method_name: str,
    error: BaseException,
    status_code: Optional[int] = None,
) -> CampaignError:
    """Wrap a network or transport error with a normalized status code."""
    status = status_code or getattr(error, "status_code", None) or 500
    body = getattr(error, "body", None)
    message = str(error) or error.__class__.__name__
    match = FAULT_CODE_PATTERN.match(body or message)
    error_code = match.group(1) if match else ErrorCode.TRANSPORT_FAILURE
    return CampaignError(
        message,
        error_code,
        status,
        method_name,
        detail=body,
        cause=error,
    )
