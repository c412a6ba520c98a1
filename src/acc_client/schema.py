"""Model of server schema documents (``xtk:schema`` entities).

A schema declares data elements, enumerations and the SOAP methods of its
namespace. Only the parts needed to call methods are modelled; the raw
XML stays available on :attr:`SchemaDocument.xml`.

Example::

    <schema namespace="xtk" name="session">
      <interface name="persist">
        <method name="Write" static="true">
          <parameters><param name="doc" type="DOMDocument"/></parameters>
        </method>
      </interface>
      <methods>
        <method name="GetOption" static="true">
          <parameters>
            <param name="name" type="string"/>
            <param name="value" type="string" inout="out"/>
            <param name="type" type="byte" inout="out"/>
          </parameters>
        </method>
      </methods>
    </schema>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from . import caster, dom
from .errors import bad_parameter

# Interface schemas are served by the schema that implements them
INTERFACE_SCHEMAS: Dict[str, Tuple[str, str]] = {
    "xtk:persist": ("xtk:session", "persist"),
}


def resolve_schema_id(schema_id: str) -> Tuple[str, Optional[str]]:
    """Map a schema id to ``(schema id to load, interface name or None)``."""
    return INTERFACE_SCHEMAS.get(schema_id, (schema_id, None))


def split_schema_id(schema_id: str) -> Tuple[str, str]:
    if not isinstance(schema_id, str) or ":" not in schema_id:
        raise bad_parameter(f"Invalid schema id '{schema_id}', expecting 'namespace:name'")
    namespace, name = schema_id.split(":", 1)
    return namespace, name


@dataclass(frozen=True)
class ParamDef:
    name: str
    type: str
    direction: str = "in"

    @property
    def is_in(self) -> bool:
        return self.direction in ("in", "inout")

    @property
    def is_out(self) -> bool:
        return self.direction in ("out", "inout")


@dataclass(frozen=True)
class MethodDef:
    name: str
    is_static: bool
    parameters: Tuple[ParamDef, ...] = ()
    interface: Optional[str] = None
    xml: Optional[ET.Element] = field(default=None, compare=False, repr=False)

    @property
    def in_parameters(self) -> List[ParamDef]:
        return [p for p in self.parameters if p.is_in]

    @property
    def out_parameters(self) -> List[ParamDef]:
        return [p for p in self.parameters if p.is_out]

    @property
    def return_type(self) -> Optional[str]:
        """Type of the single out parameter, if the method has exactly one."""
        out = self.out_parameters
        return out[0].type if len(out) == 1 else None


@dataclass
class SchemaDocument:
    namespace: str
    name: str
    label: str = ""
    elements: Dict[str, ET.Element] = field(default_factory=dict)
    methods: Dict[str, MethodDef] = field(default_factory=dict)
    enumerations: Dict[str, ET.Element] = field(default_factory=dict)
    interfaces: Dict[str, Dict[str, MethodDef]] = field(default_factory=dict)
    xml: Optional[ET.Element] = None

    @property
    def id(self) -> str:
        return f"{self.namespace}:{self.name}"

    @property
    def root_element(self) -> Optional[ET.Element]:
        return self.elements.get(self.name)

    def get_method(self, name: str, interface: Optional[str] = None) -> Optional[MethodDef]:
        if interface is not None:
            return self.interfaces.get(interface, {}).get(name)
        return self.methods.get(name)

    def get_enumeration(self, name: str) -> Optional[ET.Element]:
        return self.enumerations.get(name)


def _parse_method(element: ET.Element, interface: Optional[str]) -> MethodDef:
    parameters = []
    params_element = dom.find_element(element, "parameters")
    for param in dom.iter_child_elements(params_element, "param"):
        parameters.append(
            ParamDef(
                name=param.get("name", ""),
                type=param.get("type", "string"),
                direction=param.get("inout", "in"),
            )
        )
    return MethodDef(
        name=element.get("name", ""),
        is_static=caster.as_boolean(element.get("static")),
        parameters=tuple(parameters),
        interface=interface,
        xml=element,
    )


def parse_schema(element: ET.Element) -> SchemaDocument:
    """Build a :class:`SchemaDocument` from a ``<schema>`` element."""
    if element is None or dom.local_name(element.tag) != "schema":
        raise bad_parameter("Expecting a <schema> element")
    schema = SchemaDocument(
        namespace=element.get("namespace", ""),
        name=element.get("name", ""),
        label=element.get("label", ""),
        xml=element,
    )
    for child in dom.iter_child_elements(element):
        tag = dom.local_name(child.tag)
        if tag == "element":
            schema.elements.setdefault(child.get("name", ""), child)
        elif tag == "enumeration":
            schema.enumerations[child.get("name", "")] = child
        elif tag == "methods":
            for method in dom.iter_child_elements(child, "method"):
                definition = _parse_method(method, None)
                schema.methods[definition.name] = definition
        elif tag == "interface":
            interface = child.get("name", "")
            methods = schema.interfaces.setdefault(interface, {})
            for method in dom.iter_child_elements(child, "method"):
                definition = _parse_method(method, interface)
                methods[definition.name] = definition
    return schema
