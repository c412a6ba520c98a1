"""Restricted path expressions used to address nodes of entity documents.

Only a small subset of XPath is understood: ``/`` separated element names,
a final ``@attribute`` step, ``.`` and ``..``. An expression may be wrapped
in square brackets (``[country/@name]``), as it appears in schema
definitions.

Example::

    from acc_client.xpath import XPath

    path = XPath("/country/@name")
    path.is_absolute()                    # True
    str(path.get_relative_path())         # "country/@name"
    path.evaluate(dom.parse('<r><country name="FR"/></r>'))   # "FR"
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Union

from . import dom
from .errors import bad_parameter


class XPathElement:
    """One step of a path expression."""

    def __init__(self, path_element: Optional[str]) -> None:
        if path_element is None or path_element.strip() == "":
            raise bad_parameter("Invalid empty xpath element")
        self.path_element = path_element

    def as_string(self) -> str:
        return self.path_element

    def __str__(self) -> str:
        return self.path_element

    def __repr__(self) -> str:
        return f"XPathElement({self.path_element!r})"

    def is_self(self) -> bool:
        return self.path_element == "."

    def is_parent(self) -> bool:
        return self.path_element == ".."

    def is_attribute(self) -> bool:
        return self.path_element.startswith("@")


class XPath:
    """A parsed path expression."""

    def __init__(self, expr: Optional[str]) -> None:
        expr = (expr or "").strip()
        if expr.startswith("[") and expr.endswith("]"):
            expr = expr[1:-1].strip()
        self._path = expr

    def as_string(self) -> str:
        return self._path

    def __str__(self) -> str:
        return self._path

    def __repr__(self) -> str:
        return f"XPath({self._path!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, XPath) and other._path == self._path

    def __hash__(self) -> int:
        return hash(self._path)

    def is_empty(self) -> bool:
        return self._path == ""

    def is_absolute(self) -> bool:
        return self._path.startswith("/")

    def is_self(self) -> bool:
        return self._path == "."

    def is_root_path(self) -> bool:
        return self._path == "/"

    def get_elements(self) -> List[XPathElement]:
        return [XPathElement(step) for step in self._path.split("/") if step.strip()]

    def get_relative_path(self) -> "XPath":
        if not self.is_absolute():
            return self
        return XPath(self._path[1:])

    def evaluate(
        self,
        element: ET.Element,
        root: Optional[ET.Element] = None,
    ) -> Union[ET.Element, str, None]:
        """Resolve the expression from ``element``.

        ``root`` is the document element, used for absolute expressions and
        to resolve ``..`` (ElementTree nodes do not know their parent). It
        defaults to ``element``. Element steps select the first matching
        child; an ``@attribute`` step must be last and yields the attribute
        value or ``None``.
        """
        if self.is_empty():
            return None
        root = element if root is None else root
        node: Optional[ET.Element] = root if self.is_absolute() else element
        parents: Optional[Dict[ET.Element, ET.Element]] = None
        steps = self.get_elements()
        for index, step in enumerate(steps):
            if node is None:
                return None
            if step.is_self():
                continue
            if step.is_parent():
                if parents is None:
                    parents = {child: parent for parent in root.iter() for child in parent}
                node = parents.get(node)
            elif step.is_attribute():
                if index != len(steps) - 1:
                    raise bad_parameter(f"Attribute step must be last in xpath '{self._path}'")
                return node.get(step.as_string()[1:])
            else:
                node = dom.get_first_child_element(node, step.as_string())
        return node
