"""Canned server responses used across the test suite."""

SOAP_ENCODING = "http://schemas.xmlsoap.org/soap/encoding/"
LITERAL_XML = "http://xml.apache.org/xml-soap/literalxml"

URL = "http://acc-sdk:8080"


def sent_requests(transport):
    """Requests a mocked transport received, in order."""
    return [call.args[0] for call in transport.call_args_list]


def envelope(body: str, urn: str = "xtk:session") -> str:
    return (
        "<?xml version='1.0'?>"
        "<SOAP-ENV:Envelope xmlns:xsd='http://www.w3.org/2001/XMLSchema'"
        " xmlns:xsi='http://www.w3.org/2001/XMLSchema-instance'"
        f" xmlns:ns='urn:{urn}'"
        " xmlns:SOAP-ENV='http://schemas.xmlsoap.org/soap/envelope/'>"
        f"<SOAP-ENV:Body>{body}</SOAP-ENV:Body>"
        "</SOAP-ENV:Envelope>"
    )


def method_response(urn: str, method: str, params: str = "") -> str:
    return envelope(
        f"<{method}Response xmlns='urn:{urn}' SOAP-ENV:encodingStyle='{SOAP_ENCODING}'>"
        f"{params}"
        f"</{method}Response>",
        urn,
    )


def string_param(name: str, value: str) -> str:
    return f"<{name} xsi:type='xsd:string'>{value}</{name}>"


def typed_param(name: str, xsd_type: str, value: str) -> str:
    return f"<{name} xsi:type='xsd:{xsd_type}'>{value}</{name}>"


def element_param(name: str, xml: str = "") -> str:
    if not xml:
        return f"<{name} xsi:type='ns:Element' SOAP-ENV:encodingStyle='{LITERAL_XML}'/>"
    return f"<{name} xsi:type='ns:Element' SOAP-ENV:encodingStyle='{LITERAL_XML}'>{xml}</{name}>"


def fault(fault_string: str, detail: str = "") -> str:
    return envelope(
        "<SOAP-ENV:Fault>"
        "<faultcode>SOAP-ENV:Client</faultcode>"
        f"<faultstring xsi:type='xsd:string'>{fault_string}</faultstring>"
        f"<detail xsi:type='xsd:string'>{detail}</detail>"
        "</SOAP-ENV:Fault>"
    )


SESSION_INFO = (
    "<sessionInfo>"
    "<serverInfo advisedClientBuildNumber='0' buildNumber='9356' majNumber='6' minNumber='7'/>"
    "<userInfo datakitInDatabase='true' login='admin' loginId='1234' timezone='Europe/Paris'/>"
    "</sessionInfo>"
)

LOGON_RESPONSE = method_response(
    "xtk:session",
    "Logon",
    string_param("pstrSessionToken", "___session_token___")
    + element_param("pSessionInfo", SESSION_INFO)
    + string_param("pstrSecurityToken", "@security_token=="),
)

LOGON_RESPONSE_NO_SESSION_TOKEN = method_response(
    "xtk:session",
    "Logon",
    string_param("pstrSessionToken", "")
    + element_param("pSessionInfo", SESSION_INFO)
    + string_param("pstrSecurityToken", "@security_token=="),
)

LOGON_RESPONSE_NO_SECURITY_TOKEN = method_response(
    "xtk:session",
    "Logon",
    string_param("pstrSessionToken", "___session_token___")
    + element_param("pSessionInfo", SESSION_INFO)
    + string_param("pstrSecurityToken", ""),
)

LOGON_RESPONSE_NO_USER_INFO = method_response(
    "xtk:session",
    "Logon",
    string_param("pstrSessionToken", "___session_token___")
    + element_param("pSessionInfo", "<sessionInfo><serverInfo buildNumber='9356'/></sessionInfo>")
    + string_param("pstrSecurityToken", "@security_token=="),
)

BEARER_LOGON_RESPONSE = method_response(
    "xtk:session",
    "BearerTokenLogon",
    string_param("pstrSessionToken", "___bearer_session___")
    + element_param("pSessionInfo", SESSION_INFO)
    + string_param("pstrSecurityToken", "@bearer_security=="),
)

LOGOFF_RESPONSE = method_response("xtk:session", "Logoff")

WRITE_RESPONSE = method_response("xtk:session", "Write")

SESSION_EXPIRED = fault(
    "XSV-350008 Session has expired or is invalid. Please reconnect.",
    "The session token is no longer valid",
)

METHOD_NOT_SUPPORTED = fault(
    "SOP-330006 Error while executing the method 'GetModifiedEntities' of service 'xtk:session'."
)


def get_option_response(value: str, type_code: int) -> str:
    return method_response(
        "xtk:session",
        "GetOption",
        string_param("pstrValue", value) + typed_param("pbtType", "byte", str(type_code)),
    )


def entity_response(xml: str) -> str:
    return method_response("xtk:persist", "GetEntityIfMoreRecent", element_param("pdomDoc", xml))


EMPTY_ENTITY_RESPONSE = method_response(
    "xtk:persist", "GetEntityIfMoreRecent", element_param("pdomDoc")
)


XTK_SESSION_SCHEMA = """<schema namespace="xtk" name="session" label="Sessions" implements="xtk:persist">
  <interface name="persist">
    <method name="Write" static="true">
      <parameters><param name="doc" type="DOMDocument"/></parameters>
    </method>
    <method name="GetEntityIfMoreRecent" static="true">
      <parameters>
        <param name="pk" type="string"/>
        <param name="md5" type="string"/>
        <param name="mustExist" type="boolean"/>
        <param name="doc" type="DOMDocument" inout="out"/>
      </parameters>
    </method>
  </interface>
  <element name="session"/>
  <methods>
    <method name="GetOption" static="true">
      <parameters>
        <param name="name" type="string"/>
        <param name="value" type="string" inout="out"/>
        <param name="type" type="byte" inout="out"/>
      </parameters>
    </method>
    <method name="GetModifiedEntities" static="true">
      <parameters>
        <param name="parameters" type="DOMDocument"/>
        <param name="result" type="DOMDocument" inout="out"/>
      </parameters>
    </method>
    <method name="TestCnx" static="true"/>
    <method name="GetServerTime" static="true">
      <parameters><param name="serverTime" type="datetime" inout="out"/></parameters>
    </method>
    <method name="Blob" static="true">
      <parameters><param name="data" type="blob"/></parameters>
    </method>
    <method name="BlobResult" static="true">
      <parameters><param name="data" type="blob" inout="out"/></parameters>
    </method>
  </methods>
</schema>"""

XTK_QUERYDEF_SCHEMA = """<schema namespace="xtk" name="queryDef" label="Query">
  <element name="queryDef"/>
  <methods>
    <method name="ExecuteQuery" const="true">
      <parameters><param name="output" type="DOMDocument" inout="out"/></parameters>
    </method>
    <method name="SelectAll" const="true">
      <parameters><param name="duplicate" type="boolean"/></parameters>
    </method>
    <method name="Create" static="true">
      <parameters>
        <param name="query" type="DOMDocument"/>
        <param name="id" type="int64" inout="out"/>
      </parameters>
    </method>
  </methods>
</schema>"""

NMS_RECIPIENT_SCHEMA = """<schema namespace="nms" name="recipient" label="Recipients">
  <enumeration name="gender" basetype="byte" default="0">
    <value name="unknown" label="None specified" value="0"/>
    <value name="male" label="Male" value="1"/>
    <value name="female" label="Female" value="2"/>
  </enumeration>
  <element name="recipient" label="Recipients">
    <attribute name="email" type="string"/>
  </element>
</schema>"""


def modified_entities_response(xml: str) -> str:
    return method_response("xtk:session", "GetModifiedEntities", element_param("pdomDoc", xml))
