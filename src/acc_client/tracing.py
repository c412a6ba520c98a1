"""API call tracing with credential masking.

When ``trace_api_calls`` is enabled the client registers a
:class:`TraceObserver` that logs every SOAP and HTTP exchange on this
module's logger. Payloads go through :func:`mask_sensitive` first so that
session tokens, security tokens and passwords never reach the logs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

# (prefix, suffix) pairs; the text between them is replaced by "***"
MASKED_SECTIONS = (
    ("<Cookie>__sessiontoken=", "</Cookie>"),
    ("<X-Security-Token>", "</X-Security-Token>"),
    ('<sessiontoken xsi:type="xsd:string">', "</sessiontoken>"),
    ("<pstrSessionToken xsi:type='xsd:string'>", "</pstrSessionToken>"),
    ("<pstrSecurityToken xsi:type='xsd:string'>", "</pstrSecurityToken>"),
    ('<password xsi:type="xsd:string">', "</password>"),
)

MASK = "***"


def _remove_between(text: str, start: str, end: str) -> str:
    index = 0
    while index < len(text):
        index = text.find(start, index)
        if index == -1:
            break
        end_index = text.find(end, index)
        if end_index == -1:
            break
        text = text[: index + len(start)] + MASK + text[end_index:]
        index = index + len(start) + len(MASK)
    return text


def _mask_cookie(cookie: str) -> str:
    index = cookie.lower().find("__sessiontoken")
    if index == -1:
        return cookie
    index = cookie.find("=", index)
    if index == -1:
        return cookie
    index += 1
    end_index = cookie.find(";", index)
    if end_index == -1:
        return cookie[:index] + MASK
    return cookie[:index] + MASK + cookie[end_index:]


def mask_sensitive(value: Any) -> Any:
    """Copy of ``value`` (string, dict, list) with credentials masked and trailing blanks stripped."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(item) for item in value]
    if isinstance(value, dict):
        masked: Dict[Any, Any] = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() == "x-security-token":
                masked[key] = MASK
            elif key == "Cookie" and isinstance(item, str):
                masked[key] = _mask_cookie(item)
            else:
                masked[key] = mask_sensitive(item)
        return masked
    if isinstance(value, str):
        text = value.rstrip(" \n\r\t")
        for start, end in MASKED_SECTIONS:
            text = _remove_between(text, start, end)
        return text
    return value


class TraceObserver:
    """Logs SOAP and HTTP calls with credentials masked."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self._log = log

    def on_soap_call(self, context) -> None:
        request = context.request
        self._log.info(f"SOAP//request {context.urn}#{context.method_name} {mask_sensitive(request.data if request else '')}")

    def on_soap_call_success(self, context, result) -> None:
        self._log.info(f"SOAP//response {context.urn}#{context.method_name} {mask_sensitive(context.response or '')}")

    def on_soap_call_failure(self, context, error) -> None:
        self._log.info(f"SOAP//failure {context.urn}#{context.method_name} {mask_sensitive(str(error))}")

    def on_http_call(self, request) -> None:
        self._log.info(f"HTTP//request {request.method} {request.url} {mask_sensitive(request.headers)}")

    def on_http_call_success(self, request, body) -> None:
        self._log.info(f"HTTP//response {request.method} {request.url} {mask_sensitive(body)}")

    def on_http_call_failure(self, request, error) -> None:
        self._log.info(f"HTTP//failure {request.method} {request.url} {mask_sensitive(str(error))}")
