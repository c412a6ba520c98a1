"""XML tree helpers and the XML <-> JSON representation codec.

The server speaks XML; callers may prefer JSON-like Python values. This
module converts between an ``xml.etree.ElementTree`` element and two JSON
conventions:

* **BadgerFish**: attributes become ``"@name"`` keys, element text becomes
  the ``"$"`` key, child elements become nested objects.
* **SimpleJson**: attributes become plain keys, a text-only child element
  ``<desc>text</desc>`` folds into its parent as ``"$desc": "text"``, the
  element's own text is ``"$"``.

Both conventions share the folding of child elements: a root whose tag
ends in ``-collection`` always decodes its children to a list (even for
zero or one child), any other element decodes a single child of a given
name to an object and two or more to a list. Attribute values always
decode to strings; native booleans and numbers are written as their
string form on encode.

Trees returned by :func:`parse` use local names only: namespace URIs of
tags and attributes are dropped so that payloads extracted from SOAP
envelopes can be addressed by their plain element names.

Example::

    from acc_client import dom

    element = dom.parse('<root a="1"><desc>Hello</desc></root>')
    dom.to_json(element, "SimpleJson")   # {"a": "1", "$desc": "Hello"}
    dom.to_json(element, "BadgerFish")   # {"@a": "1", "desc": {"$": "Hello"}}
    dom.to_xml_string(dom.from_json("root", {"a": 2}, "SimpleJson"))
    # '<root a="2"/>'
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional
from xml.parsers import expat

from . import caster
from .errors import CampaignError, ErrorCode, bad_parameter, invalid_representation, unexpected_response

XML = "xml"
BADGERFISH = "BadgerFish"
SIMPLE_JSON = "SimpleJson"
JSON_FLAVORS = (BADGERFISH, SIMPLE_JSON)
REPRESENTATIONS = (XML, BADGERFISH, SIMPLE_JSON)

COLLECTION_SUFFIX = "-collection"


# ---------------- Parsing & serialization -----------------
def local_name(name: str) -> str:
    if name.startswith("{"):
        return name.rsplit("}", 1)[-1]
    return name


def strip_namespaces(element: ET.Element) -> ET.Element:
    """Rewrite tags and attribute names of ``element`` to local names, in place."""
    for node in element.iter():
        if not isinstance(node.tag, str):
            continue
        node.tag = local_name(node.tag)
        if any(key.startswith("{") for key in node.attrib):
            attrib = {local_name(key): value for key, value in node.attrib.items()}
            node.attrib.clear()
            node.attrib.update(attrib)
    return element


class _TreeBuilder:
    """Builds an element tree from expat events, tracking CDATA sections.

    ``ET.fromstring`` cannot tell ``<root><![CDATA[]]></root>`` from
    ``<root/>``: a leaf element holding an empty CDATA section gets ``""``
    as text here instead of ``None``.
    """

    def __init__(self) -> None:
        self._builder = ET.TreeBuilder()
        self._cdata: List[bool] = []
        self._parser = expat.ParserCreate(namespace_separator="}")
        self._parser.buffer_text = True
        self._parser.StartElementHandler = self._start
        self._parser.EndElementHandler = self._end
        self._parser.CharacterDataHandler = self._builder.data
        self._parser.StartCdataSectionHandler = self._start_cdata

    @staticmethod
    def _qualified(name: str) -> str:
        # expat reports "uri}local"; ElementTree spells it "{uri}local"
        return "{" + name if "}" in name else name

    def _start(self, tag: str, attrib: Dict[str, str]) -> None:
        self._cdata.append(False)
        self._builder.start(
            self._qualified(tag), {self._qualified(key): value for key, value in attrib.items()}
        )

    def _end(self, tag: str) -> None:
        element = self._builder.end(self._qualified(tag))
        if self._cdata.pop() and element.text is None and len(element) == 0:
            element.text = ""

    def _start_cdata(self) -> None:
        if self._cdata:
            self._cdata[-1] = True

    def parse(self, text: str) -> ET.Element:
        self._parser.Parse(text, True)
        return self._builder.close()


def parse(text: str) -> ET.Element:
    """Parse an XML string into an element tree using local names."""
    if text is None:
        raise bad_parameter("Cannot parse empty XML")
    try:
        root = _TreeBuilder().parse(text.lstrip())
    except expat.ExpatError as e:
        raise CampaignError(
            f"Invalid XML: {e}", ErrorCode.UNEXPECTED_RESPONSE, 500, cause=e
        ) from e
    return strip_namespaces(root)


def escape_xml_string(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _escape_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attribute(text: str) -> str:
    return _escape_text(text).replace('"', "&quot;")


def _serialize(element: ET.Element, out: List[str]) -> None:
    tag = local_name(element.tag)
    out.append(f"<{tag}")
    for key, value in element.attrib.items():
        out.append(f' {local_name(key)}="{_escape_attribute(str(value))}"')
    if len(element) == 0 and not element.text:
        out.append("/>")
        return
    out.append(">")
    if element.text:
        out.append(_escape_text(element.text))
    for child in element:
        if isinstance(child.tag, str):
            _serialize(child, out)
        if child.tail:
            out.append(_escape_text(child.tail))
    out.append(f"</{tag}>")


def to_xml_string(element: Optional[ET.Element]) -> str:
    """Serialize an element; empty elements are written as ``<tag/>``."""
    if element is None:
        return ""
    out: List[str] = []
    _serialize(element, out)
    return "".join(out)


# ---------------- Tree navigation -----------------
def _matches(element: ET.Element, name: Optional[str]) -> bool:
    if not isinstance(element.tag, str):
        return False
    return name is None or element.tag == name or local_name(element.tag) == name


def iter_child_elements(element: Optional[ET.Element], name: Optional[str] = None) -> Iterator[ET.Element]:
    if element is None:
        return
    for child in element:
        if _matches(child, name):
            yield child


def get_first_child_element(element: Optional[ET.Element], name: Optional[str] = None) -> Optional[ET.Element]:
    return next(iter_child_elements(element, name), None)


def get_next_sibling_element(
    element: Optional[ET.Element],
    parent: Optional[ET.Element],
    name: Optional[str] = None,
) -> Optional[ET.Element]:
    """Next sibling of ``element`` within ``parent`` (ElementTree has no parent links)."""
    if element is None or parent is None:
        return None
    found = False
    for child in parent:
        if found and _matches(child, name):
            return child
        if child is element:
            found = True
    return None


def find_element(element: Optional[ET.Element], name: str, must_exist: bool = False) -> Optional[ET.Element]:
    child = get_first_child_element(element, name)
    if child is None and must_exist:
        raise unexpected_response(f"Cannot find element '{name}'")
    return child


def element_value(element: Optional[ET.Element]) -> str:
    """Direct text and CDATA of ``element``; text of child elements is excluded."""
    if element is None:
        return ""
    parts = [element.text or ""]
    for child in element:
        parts.append(child.tail or "")
    return "".join(parts)


def get_attribute_as_string(element: ET.Element, name: str) -> str:
    return element.get(name, "")


def get_attribute_as_byte(element: ET.Element, name: str) -> int:
    return caster.as_byte(element.get(name))


def get_attribute_as_boolean(element: ET.Element, name: str) -> bool:
    return caster.as_boolean(element.get(name))


def get_attribute_as_short(element: ET.Element, name: str) -> int:
    return caster.as_short(element.get(name))


def get_attribute_as_long(element: ET.Element, name: str) -> int:
    return caster.as_long(element.get(name))


# ---------------- XML -> JSON -----------------
def is_collection(element: ET.Element) -> bool:
    return local_name(element.tag).endswith(COLLECTION_SUFFIX)


def _group_children(element: ET.Element) -> Dict[str, List[ET.Element]]:
    groups: Dict[str, List[ET.Element]] = {}
    for child in element:
        if isinstance(child.tag, str):
            groups.setdefault(local_name(child.tag), []).append(child)
    return groups


def _own_text(element: ET.Element) -> Optional[str]:
    """Text of the element itself; whitespace between child elements is ignored."""
    text = element_value(element)
    if len(element) == 0:
        return text if element.text is not None else None
    return text if text.strip() else None


def _is_text_only(element: ET.Element) -> bool:
    return not element.attrib and len(element) == 0 and bool(element.text)


def _to_badgerfish(element: ET.Element) -> Dict[str, Any]:
    json: Dict[str, Any] = {}
    for key, value in element.attrib.items():
        json[f"@{key}"] = value
    force_list = is_collection(element)
    for name, children in _group_children(element).items():
        if len(children) == 1 and not force_list:
            json[name] = _to_badgerfish(children[0])
        else:
            json[name] = [_to_badgerfish(child) for child in children]
    text = _own_text(element)
    if text is not None:
        json["$"] = text
    return json


def _to_simple_json(element: ET.Element) -> Dict[str, Any]:
    json: Dict[str, Any] = {}
    for key, value in element.attrib.items():
        json[key] = value
    force_list = is_collection(element)
    for name, children in _group_children(element).items():
        if len(children) == 1 and not force_list:
            child = children[0]
            if _is_text_only(child):
                json[f"${name}"] = element_value(child)
            else:
                json[name] = _to_simple_json(child)
        else:
            json[name] = [_to_simple_json(child) for child in children]
    text = _own_text(element)
    if text:
        json["$"] = text
    return json


def _check_flavor(flavor: str) -> None:
    if flavor not in JSON_FLAVORS:
        raise CampaignError(
            f"Invalid JSON flavor '{flavor}'. Should be 'BadgerFish' or 'SimpleJson'",
            ErrorCode.INVALID_REPRESENTATION,
        )


def to_json(element: Optional[ET.Element], flavor: str = SIMPLE_JSON) -> Optional[Dict[str, Any]]:
    """Convert an element to a BadgerFish or SimpleJson value."""
    _check_flavor(flavor)
    if element is None:
        return None
    if flavor == BADGERFISH:
        return _to_badgerfish(element)
    return _to_simple_json(element)


# ---------------- JSON -> XML -----------------
def _scalar(value: Any, key: str) -> str:
    if isinstance(value, (str, bool, int, float, datetime, date)):
        return caster.as_string(value)
    raise bad_parameter(
        f"Cannot encode value of type '{type(value).__name__}' for '{key}'"
    )


def _from_badgerfish(element: ET.Element, value: Dict[str, Any]) -> None:
    for key, item in value.items():
        if item is None:
            continue
        if key == "$":
            element.text = _scalar(item, key)
        elif key.startswith("@"):
            element.set(key[1:], _scalar(item, key))
        else:
            _append_children(element, key, item, _from_badgerfish)


def _from_simple_json(element: ET.Element, value: Dict[str, Any]) -> None:
    for key, item in value.items():
        if item is None:
            continue
        if key == "$":
            element.text = _scalar(item, key)
        elif key.startswith("$"):
            name = key[1:]
            # a sibling object of the same name receives the text instead
            if isinstance(value.get(name), dict):
                continue
            child = ET.SubElement(element, name)
            child.text = _scalar(item, key)
        elif isinstance(item, dict):
            child = ET.SubElement(element, key)
            _from_simple_json(child, item)
            text = value.get(f"${key}")
            if text is not None:
                child.text = _scalar(text, f"${key}")
        elif isinstance(item, (list, tuple)):
            _append_children(element, key, item, _from_simple_json)
        else:
            element.set(key, _scalar(item, key))


def _append_children(element: ET.Element, name: str, value: Any, encode) -> None:
    items = value if isinstance(value, (list, tuple)) else [value]
    for item in items:
        if item is None:
            continue
        child = ET.SubElement(element, name)
        if isinstance(item, dict):
            encode(child, item)
        else:
            child.text = _scalar(item, name)


def from_json(root_name: Optional[str], value: Optional[Dict[str, Any]], flavor: str = SIMPLE_JSON) -> ET.Element:
    """Build an element named ``root_name`` from a BadgerFish or SimpleJson value."""
    _check_flavor(flavor)
    if not root_name:
        raise bad_parameter("Cannot transform JSON to XML: no XML root name was given")
    root = ET.Element(root_name)
    if value is None:
        return root
    if not isinstance(value, dict):
        raise bad_parameter(
            f"Cannot transform value of type '{type(value).__name__}' to XML element '{root_name}'"
        )
    if flavor == BADGERFISH:
        _from_badgerfish(root, value)
    else:
        _from_simple_json(root, value)
    return root


# ---------------- Representations -----------------
def check_representation(representation: Any, method_name: Optional[str] = None) -> str:
    if representation not in REPRESENTATIONS:
        raise invalid_representation(representation, method_name)
    return representation


def to_representation(element: Optional[ET.Element], representation: str) -> Any:
    """Convert an element to ``representation`` (``xml`` returns the element itself)."""
    check_representation(representation)
    if representation == XML:
        return element
    return to_json(element, representation)


def from_representation(root_name: Optional[str], value: Any, representation: str) -> ET.Element:
    """Convert a value in ``representation`` to an element."""
    check_representation(representation)
    if representation == XML:
        if isinstance(value, ET.Element):
            return value
        if isinstance(value, str):
            return parse(value)
        raise bad_parameter(
            f"Expected an XML element, got value of type '{type(value).__name__}'"
        )
    return from_json(root_name, value, representation)


def convert(value: Any, from_representation_: str, to_representation_: str, root_name: str = "root") -> Any:
    """Convert a value between two representations."""
    check_representation(from_representation_)
    check_representation(to_representation_)
    if from_representation_ == to_representation_:
        return value
    element = from_representation(root_name, value, from_representation_)
    return to_representation(element, to_representation_)
