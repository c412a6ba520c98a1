"""SOAP request building and response parsing.

A :class:`SoapMethodCall` is one round trip to the server's SOAP router:
parameters are appended with the ``write_*`` methods (or :meth:`write`,
which picks the writer from a schema type tag), :meth:`build_request`
produces the :class:`~acc_client.transport.HttpRequest`, and once the
transport answered, :meth:`parse_response` checks for a fault and
positions the ``get_next_*`` readers on the out parameters.

Example::

    call = SoapMethodCall("xtk:session", "GetOption", session_token="___tok")
    call.write_string("name", "XtkDatabaseId")
    request = call.build_request("https://acc.example.com")
    call.parse_response(await transport(request))
    value, type_ = call.get_next_string(), call.get_next_byte()
    call.check_no_more_args()
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import caster, dom
from .errors import CampaignError, ErrorCode, soap_fault, unexpected_response
from .transport import HttpRequest, with_query

SOAP_ENCODING = "http://schemas.xmlsoap.org/soap/encoding/"
LITERAL_XML_ENCODING = "http://xml.apache.org/xml-soap/literalxml"
SOAP_ROUTER_PATH = "/nl/jsp/soaprouter.jsp"


@dataclass
class CallContext:
    """What observers see of a SOAP call.

    ``internal`` is True for calls the engine makes on its own behalf
    (schema loading, option lookups, cache refresh).
    """

    schema_id: str
    method_name: str
    urn: str = ""
    namespace: Any = None
    is_static: bool = True
    extra_headers: Dict[str, str] = field(default_factory=dict)
    extra_params: Dict[str, Any] = field(default_factory=dict)
    representation: str = dom.SIMPLE_JSON
    internal: bool = False
    request: Optional[HttpRequest] = None
    response: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.urn:
            self.urn = self.schema_id


class SoapMethodCall:
    """Marshaller for one ``<urn>#<method>`` call."""

    def __init__(
        self,
        urn: str,
        method_name: str,
        session_token: str = "",
        security_token: str = "",
        user_agent: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.urn = urn
        self.method_name = method_name
        self.session_token = session_token or ""
        self.security_token = security_token or ""
        self.user_agent = user_agent
        self.extra_headers = dict(extra_headers or {})
        self._params: List[str] = []
        self.request: Optional[HttpRequest] = None
        self.response: Optional[str] = None
        self._out: List[ET.Element] = []
        self._position = 0

    @property
    def full_name(self) -> str:
        return f"{self.urn}#{self.method_name}"

    # ---------------- Writers -----------------
    def _write_scalar(self, name: str, xsd_type: str, text: str) -> None:
        self._params.append(
            f'<{name} xsi:type="{xsd_type}">{dom.escape_xml_string(text)}</{name}>'
        )

    def write_string(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:string", caster.as_string(value))

    def write_boolean(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:boolean", caster.as_string(caster.as_boolean(value)))

    def write_byte(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:byte", str(caster.as_byte(value)))

    def write_short(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:short", str(caster.as_short(value)))

    def write_long(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:int", str(caster.as_long(value)))

    def write_int64(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:long", str(caster.as_int64(value)))

    def write_double(self, name: str, value: Any) -> None:
        self._write_scalar(name, "xsd:double", caster.as_string(caster.as_number(value)))

    def write_timestamp(self, name: str, value: Any) -> None:
        timestamp = caster.as_datetime(value)
        self._write_scalar(name, "xsd:dateTime", caster.format_datetime(timestamp) if timestamp else "")

    def write_date(self, name: str, value: Any) -> None:
        day = caster.as_date(value)
        self._write_scalar(name, "xsd:date", day.isoformat() if day else "")

    def write_element(self, name: str, element: Optional[ET.Element]) -> None:
        content = dom.to_xml_string(element)
        if not content:
            self._params.append(
                f'<{name} xsi:type="ns:Element" SOAP-ENV:encodingStyle="{LITERAL_XML_ENCODING}"/>'
            )
            return
        self._params.append(
            f'<{name} xsi:type="ns:Element" SOAP-ENV:encodingStyle="{LITERAL_XML_ENCODING}">{content}</{name}>'
        )

    def write_document(self, name: str, element: Optional[ET.Element]) -> None:
        self.write_element(name, element)

    def write(self, name: str, type_: str, value: Any) -> None:
        """Write ``value`` with the writer registered for schema type ``type_``."""
        writer = WRITERS.get(type_)
        if writer is None:
            raise CampaignError(
                f"Parameter type '{type_}' is not supported",
                ErrorCode.UNSUPPORTED_PARAMETER_TYPE,
                400,
                self.full_name,
            )
        writer(self, name, value)

    # ---------------- Request -----------------
    def envelope(self) -> str:
        params = "".join(self._params)
        return (
            '<SOAP-ENV:Envelope xmlns:xsd="http://www.w3.org/2001/XMLSchema"'
            ' xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"'
            f' xmlns:ns="urn:{self.urn}"'
            ' xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
            "<SOAP-ENV:Header/>"
            "<SOAP-ENV:Body>"
            f'<m:{self.method_name} xmlns:m="urn:{self.urn}" SOAP-ENV:encodingStyle="{SOAP_ENCODING}">'
            f'<sessiontoken xsi:type="xsd:string">{dom.escape_xml_string(self.session_token)}</sessiontoken>'
            f"{params}"
            f"</m:{self.method_name}>"
            "</SOAP-ENV:Body>"
            "</SOAP-ENV:Envelope>"
        )

    def build_request(self, endpoint: str, options: Optional[Dict[str, Any]] = None) -> HttpRequest:
        headers: Dict[str, str] = {
            "Content-type": "application/soap+xml",
            "SoapAction": f"{self.urn}#{self.method_name}",
        }
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if self.security_token:
            headers["X-Security-Token"] = self.security_token
        if self.session_token:
            headers["Cookie"] = f"__sessiontoken={self.session_token}"
        headers.update(self.extra_headers)
        self.request = HttpRequest(
            url=with_query(f"{endpoint.rstrip('/')}{SOAP_ROUTER_PATH}?{self.urn}:{self.method_name}", options),
            method="POST",
            headers=headers,
            data=self.envelope(),
            options=dict(options or {}),
        )
        return self.request

    def update_tokens(self, session_token: str, security_token: str) -> None:
        """Adopt new credentials; the next :meth:`build_request` uses them."""
        self.session_token = session_token or ""
        self.security_token = security_token or ""

    # ---------------- Response -----------------
    def parse_response(self, body: str) -> None:
        """Parse the response envelope; raises :class:`CampaignError` on a fault."""
        self.response = body
        try:
            root = dom.parse(body)
        except CampaignError as e:
            raise unexpected_response(f"Invalid SOAP response: {e.message}", self.full_name) from e
        body_element = dom.find_element(root, "Body")
        if dom.local_name(root.tag) != "Envelope" or body_element is None:
            raise unexpected_response("Malformed SOAP response: missing SOAP-ENV:Body", self.full_name)
        result = dom.get_first_child_element(body_element)
        if result is None:
            raise unexpected_response("Malformed SOAP response: empty SOAP-ENV:Body", self.full_name)
        if result.tag == "Fault":
            raise soap_fault(
                self.full_name,
                dom.element_value(dom.find_element(result, "faultcode")),
                dom.element_value(dom.find_element(result, "faultstring")),
                dom.element_value(dom.find_element(result, "detail")) or None,
            )
        if result.tag != f"{self.method_name}Response":
            raise unexpected_response(
                f"Malformed SOAP response: expecting '{self.method_name}Response', got '{result.tag}'",
                self.full_name,
            )
        self._out = list(dom.iter_child_elements(result))
        self._position = 0

    def peek_next_name(self) -> Optional[str]:
        if self._position >= len(self._out):
            return None
        return self._out[self._position].tag

    def peek_next_element(self) -> Optional[ET.Element]:
        """Content of the next out parameter without consuming it."""
        if self._position >= len(self._out):
            return None
        return dom.get_first_child_element(self._out[self._position])

    def _next(self) -> ET.Element:
        if self._position >= len(self._out):
            raise unexpected_response("Missing out parameter in SOAP response", self.full_name)
        element = self._out[self._position]
        self._position += 1
        return element

    def get_next_string(self) -> str:
        return dom.element_value(self._next())

    def get_next_boolean(self) -> bool:
        return caster.as_boolean(self.get_next_string())

    def get_next_byte(self) -> int:
        return caster.as_byte(self.get_next_string())

    def get_next_short(self) -> int:
        return caster.as_short(self.get_next_string())

    def get_next_long(self) -> int:
        return caster.as_long(self.get_next_string())

    def get_next_int64(self) -> int:
        return caster.as_int64(self.get_next_string())

    def get_next_double(self) -> float:
        return caster.as_number(self.get_next_string())

    def get_next_timestamp(self):
        return caster.as_datetime(self.get_next_string())

    def get_next_date(self):
        return caster.as_date(self.get_next_string())

    def get_next_element(self) -> Optional[ET.Element]:
        return dom.get_first_child_element(self._next())

    def get_next_document(self) -> Optional[ET.Element]:
        return self.get_next_element()

    def read(self, type_: str) -> Any:
        """Read the next out parameter with the reader registered for ``type_``."""
        reader = READERS.get(type_)
        if reader is None:
            raise CampaignError(
                f"Return type '{type_}' is not supported",
                ErrorCode.UNSUPPORTED_RETURN_TYPE,
                400,
                self.full_name,
            )
        return reader(self)

    def check_no_more_args(self) -> None:
        if self._position < len(self._out):
            raise unexpected_response(
                f"Too many out parameters in SOAP response: '{self._out[self._position].tag}' was not expected",
                self.full_name,
            )


WRITERS: Dict[str, Callable[[SoapMethodCall, str, Any], None]] = {
    "string": SoapMethodCall.write_string,
    "boolean": SoapMethodCall.write_boolean,
    "byte": SoapMethodCall.write_byte,
    "short": SoapMethodCall.write_short,
    "int": SoapMethodCall.write_long,
    "long": SoapMethodCall.write_long,
    "int64": SoapMethodCall.write_int64,
    "float": SoapMethodCall.write_double,
    "double": SoapMethodCall.write_double,
    "datetime": SoapMethodCall.write_timestamp,
    "dateTime": SoapMethodCall.write_timestamp,
    "date": SoapMethodCall.write_date,
    "DOMElement": SoapMethodCall.write_element,
    "element": SoapMethodCall.write_element,
    "DOMDocument": SoapMethodCall.write_document,
    "document": SoapMethodCall.write_document,
}

READERS: Dict[str, Callable[[SoapMethodCall], Any]] = {
    "string": SoapMethodCall.get_next_string,
    "boolean": SoapMethodCall.get_next_boolean,
    "byte": SoapMethodCall.get_next_byte,
    "short": SoapMethodCall.get_next_short,
    "int": SoapMethodCall.get_next_long,
    "long": SoapMethodCall.get_next_long,
    "int64": SoapMethodCall.get_next_int64,
    "float": SoapMethodCall.get_next_double,
    "double": SoapMethodCall.get_next_double,
    "datetime": SoapMethodCall.get_next_timestamp,
    "dateTime": SoapMethodCall.get_next_timestamp,
    "date": SoapMethodCall.get_next_date,
    "DOMElement": SoapMethodCall.get_next_element,
    "element": SoapMethodCall.get_next_element,
    "DOMDocument": SoapMethodCall.get_next_document,
    "document": SoapMethodCall.get_next_document,
}

ELEMENT_TYPES = ("DOMElement", "element", "DOMDocument", "document")
