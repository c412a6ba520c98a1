"""Schema-driven method dispatch and the dynamic ``nlws`` call surface.

Calls are resolved in two stages. The :class:`Dispatcher` is a plain
"invoke by name" engine keyed by ``(schema id, method name)``: it loads the
schema through the entity cache, checks the method, marshals parameters
with the declared type tags, sends the call through the session and
unmarshals the out parameters. The façade classes only translate Python
attribute access into dispatcher calls:

* :class:`NamespaceRoot` (``client.nlws``): ``nlws.xtkSession`` or
  ``nlws.xtk_session`` or ``nlws["xtk:session"]`` gives a namespace;
  ``.xml`` / ``.json`` / ``.headers(...)`` / ``.push_down(...)`` give scoped
  copies of the root.
* :class:`SchemaNamespace`: static methods are coroutines
  (``await nlws.xtkSession.getOption("XtkDatabaseId")``) and
  ``create(value)`` builds an :class:`EntityInstance` for non-static ones.
* :class:`EntityInstance`: non-static methods are coroutines; a method
  returning an entity of the same kind as the instance rewrites it.

Example::

    query = client.nlws.xtkQueryDef.create({
        "schema": "nms:recipient", "operation": "select",
        "select": {"node": [{"expr": "@email"}]},
    })
    recipients = await query.executeQuery()
"""

from __future__ import annotations

import inspect
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import dom
from .errors import CampaignError, ErrorCode, bad_parameter
from .schema import MethodDef, SchemaDocument, parse_schema, resolve_schema_id, split_schema_id
from .soap import ELEMENT_TYPES, READERS, CallContext, SoapMethodCall

logger = logging.getLogger(__name__)

_CAMEL_ALIAS = re.compile(r"^([a-z][a-z0-9]*)([A-Z][A-Za-z0-9]*)$")


def schema_id_from_alias(alias: str) -> str:
    """``xtkQueryDef`` / ``xtk_query_def`` -> ``xtk:queryDef``."""
    if ":" in alias:
        return alias
    if "_" in alias:
        namespace, *words = [word for word in alias.split("_") if word]
        if not words:
            raise bad_parameter(f"Invalid namespace alias '{alias}'")
        name = words[0] + "".join(word[:1].upper() + word[1:] for word in words[1:])
        return f"{namespace}:{name}"
    match = _CAMEL_ALIAS.match(alias)
    if match is None:
        raise bad_parameter(f"Invalid namespace alias '{alias}'")
    namespace, name = match.groups()
    return f"{namespace}:{name[:1].lower()}{name[1:]}"


def method_name_from_alias(alias: str) -> str:
    """``getOption`` / ``get_option`` -> ``GetOption``."""
    if "_" in alias:
        return "".join(word[:1].upper() + word[1:] for word in alias.split("_") if word)
    return alias[:1].upper() + alias[1:]


@dataclass(frozen=True)
class CallScope:
    """Per-call overrides accumulated by the façade."""

    representation: str = dom.SIMPLE_JSON
    headers: Dict[str, str] = field(default_factory=dict)
    push_down: Dict[str, Any] = field(default_factory=dict)
    internal: bool = False

    def with_representation(self, representation: str) -> "CallScope":
        return replace(self, representation=dom.check_representation(representation))

    def with_headers(self, headers: Optional[Dict[str, str]]) -> "CallScope":
        merged = dict(self.headers)
        merged.update(headers or {})
        return replace(self, headers=merged)

    def with_push_down(self, push_down: Optional[Dict[str, Any]]) -> "CallScope":
        merged = dict(self.push_down)
        merged.update(push_down or {})
        return replace(self, push_down=merged)


class Dispatcher:
    """Invokes server methods by ``(schema id, method name)``."""

    def __init__(self, client: Any) -> None:
        self.client = client
        # schema id -> (schema element it was parsed from, parsed schema)
        self._schemas: Dict[str, Tuple[ET.Element, SchemaDocument]] = {}

    async def load_schema(self, schema_id: str) -> SchemaDocument:
        element = await self.client.get_schema(schema_id, representation=dom.XML, internal=True)
        if element is None:
            raise CampaignError(
                f"Schema '{schema_id}' not found", ErrorCode.SCHEMA_NOT_FOUND, 400
            )
        memo = self._schemas.get(schema_id)
        if memo is not None and memo[0] is element:
            return memo[1]
        schema = parse_schema(element)
        self._schemas[schema_id] = (element, schema)
        return schema

    def forget_schema(self, schema_id: str) -> None:
        self._schemas.pop(schema_id, None)

    async def get_method(self, schema_id: str, method_name: str) -> MethodDef:
        load_id, interface = resolve_schema_id(schema_id)
        schema = await self.load_schema(load_id)
        method = schema.get_method(method_name, interface)
        if method is None:
            raise CampaignError(
                f"Method '{method_name}' of schema '{schema_id}' not found",
                ErrorCode.METHOD_NOT_FOUND,
                400,
                f"{schema_id}#{method_name}",
            )
        return method

    def _to_element(self, call: SoapMethodCall, name: str, value: Any, representation: str) -> Optional[ET.Element]:
        if value is None:
            return None
        if isinstance(value, ET.Element):
            return value
        if representation == dom.XML:
            return dom.from_representation(None, value, dom.XML)
        if not isinstance(value, dict):
            raise bad_parameter(
                f"Parameter '{name}' must be an object, got '{type(value).__name__}'", call.full_name
            )
        key = "@xtkschema" if representation == dom.BADGERFISH else "xtkschema"
        xtkschema = value.get(key)
        if not xtkschema or not isinstance(xtkschema, str):
            raise CampaignError(
                f"Parameter '{name}' needs an 'xtkschema' attribute naming its root element",
                ErrorCode.MISSING_ROOT_NAME,
                400,
                call.full_name,
            )
        root_name = xtkschema.split(":", 1)[-1]
        return dom.from_representation(root_name, value, representation)

    def _write_params(
        self, call: SoapMethodCall, method: MethodDef, args: Sequence[Any], representation: str
    ) -> None:
        in_parameters = method.in_parameters
        if len(args) > len(in_parameters):
            raise bad_parameter(
                f"Too many parameters: '{call.full_name}' takes {len(in_parameters)}, got {len(args)}",
                call.full_name,
            )
        for index, param in enumerate(in_parameters):
            value = args[index] if index < len(args) else None
            if param.type in ELEMENT_TYPES:
                value = self._to_element(call, param.name, value, representation)
            call.write(param.name, param.type, value)

    async def invoke(
        self,
        schema_id: str,
        method_name: str,
        instance: Optional[ET.Element],
        args: Sequence[Any],
        scope: CallScope,
    ) -> Tuple[Any, Optional[ET.Element]]:
        """Call ``schema_id#method_name``; returns ``(result, updated instance XML or None)``.

        A single callable argument is called with ``(method_xml, context)``
        and must return (or resolve to) the actual argument list.
        """
        representation = dom.check_representation(scope.representation)
        method = await self.get_method(schema_id, method_name)
        full_name = f"{schema_id}#{method_name}"
        if not method.is_static and instance is None:
            raise CampaignError(
                f"Cannot call non-static method '{method_name}' of schema '{schema_id}' without an instance",
                ErrorCode.NON_STATIC_WITHOUT_INSTANCE,
                400,
                full_name,
            )

        for param in method.out_parameters:
            if param.type not in READERS:
                raise CampaignError(
                    f"Return type '{param.type}' of '{full_name}' is not supported",
                    ErrorCode.UNSUPPORTED_RETURN_TYPE,
                    400,
                    full_name,
                )

        namespace, _ = split_schema_id(schema_id)
        context = CallContext(
            schema_id=schema_id,
            method_name=method_name,
            urn=schema_id,
            namespace=namespace,
            is_static=method.is_static,
            extra_headers=dict(scope.headers),
            extra_params=dict(scope.push_down),
            representation=representation,
            internal=scope.internal,
        )
        if len(args) == 1 and callable(args[0]):
            produced = args[0](method.xml, context)
            if inspect.isawaitable(produced):
                produced = await produced
            args = list(produced or [])

        session = self.client.session
        call = session.new_soap_call(schema_id, method_name, scope.headers)
        if not method.is_static:
            call.write_element("document", instance)
        self._write_params(call, method, args, representation)

        out_parameters = method.out_parameters
        # entity slot: leading <entity> out element not declared by the schema
        entity_slot = not method.is_static and not (out_parameters and out_parameters[0].name == "entity")
        returned_entity: List[Optional[ET.Element]] = []

        def read(soap_call: SoapMethodCall) -> List[Any]:
            returned_entity.clear()
            if entity_slot and soap_call.peek_next_name() == "entity":
                returned_entity.append(soap_call.get_next_element())
            values = [soap_call.read(param.type) for param in out_parameters]
            soap_call.check_no_more_args()
            return values

        values = await session.send_soap(call, context, scope.push_down, read=read)

        entity = returned_entity[0] if returned_entity else None
        if not entity_slot and not method.is_static and values and out_parameters[0].type in ELEMENT_TYPES:
            entity = values[0]
        updated: Optional[ET.Element] = None
        if isinstance(entity, ET.Element) and entity.tag == instance.tag:
            updated = entity

        results = [
            dom.to_representation(value, representation) if param.type in ELEMENT_TYPES else value
            for param, value in zip(out_parameters, values)
        ]
        if not results:
            return None, updated
        if len(results) == 1:
            return results[0], updated
        return results, updated


class _Method:
    """Bound coroutine for one server method."""

    def __init__(self, namespace: "SchemaNamespace", method_name: str, instance: Optional["EntityInstance"] = None) -> None:
        self._namespace = namespace
        self._method_name = method_name
        self._instance = instance

    def __repr__(self) -> str:
        return f"<method {self._namespace.schema_id}#{self._method_name}>"

    async def __call__(self, *args: Any) -> Any:
        namespace = self._namespace
        instance_xml = self._instance.xml if self._instance is not None else None
        result, updated = await namespace.client.dispatcher.invoke(
            namespace.schema_id, self._method_name, instance_xml, args, namespace.scope
        )
        if updated is not None and self._instance is not None:
            self._instance._replace(updated)
        return result


class EntityInstance:
    """Entity content plus access to the non-static methods of its schema."""

    def __init__(self, namespace: "SchemaNamespace", xml: ET.Element) -> None:
        self._namespace = namespace
        self._xml = xml

    @property
    def xml(self) -> ET.Element:
        return self._xml

    def _replace(self, xml: ET.Element) -> None:
        self._xml = xml

    def inspect(self) -> Any:
        """Current content in the representation of the namespace scope."""
        return dom.to_representation(self._xml, self._namespace.scope.representation)

    def __getattr__(self, name: str) -> _Method:
        if name.startswith("_"):
            raise AttributeError(name)
        return _Method(self._namespace, method_name_from_alias(name), self)

    def __repr__(self) -> str:
        return f"<EntityInstance {self._namespace.schema_id} {dom.to_xml_string(self._xml)}>"


class SchemaNamespace:
    """Methods of one schema, e.g. ``nlws.xtkSession``."""

    def __init__(self, client: Any, schema_id: str, scope: CallScope) -> None:
        split_schema_id(schema_id)
        self.client = client
        self.schema_id = schema_id
        self.scope = scope

    def create(self, value: Any = None) -> EntityInstance:
        """Instance of this schema's entity from ``value`` (in the scope representation)."""
        _, name = split_schema_id(self.schema_id)
        if isinstance(value, ET.Element):
            xml = value
        elif self.scope.representation == dom.XML:
            xml = dom.from_representation(name, value, dom.XML) if value is not None else ET.Element(name)
        else:
            xml = dom.from_representation(name, value if value is not None else {}, self.scope.representation)
        return EntityInstance(self, xml)

    async def logon(self) -> None:
        await self.client.logon()

    async def logoff(self) -> None:
        await self.client.logoff()

    def __getattr__(self, name: str) -> _Method:
        if name.startswith("_"):
            raise AttributeError(name)
        return _Method(self, method_name_from_alias(name))

    def __repr__(self) -> str:
        return f"<SchemaNamespace {self.schema_id}>"


class NamespaceRoot:
    """Entry point of the dynamic call surface (``client.nlws``)."""

    def __init__(self, client: Any, scope: Optional[CallScope] = None) -> None:
        self._client = client
        self._scope = scope or CallScope()

    @property
    def scope(self) -> CallScope:
        return self._scope

    @property
    def xml(self) -> "NamespaceRoot":
        return NamespaceRoot(self._client, self._scope.with_representation(dom.XML))

    @property
    def json(self) -> "NamespaceRoot":
        return NamespaceRoot(self._client, self._scope.with_representation(dom.SIMPLE_JSON))

    @property
    def badger_fish(self) -> "NamespaceRoot":
        return NamespaceRoot(self._client, self._scope.with_representation(dom.BADGERFISH))

    def headers(self, headers: Optional[Dict[str, str]] = None) -> "NamespaceRoot":
        return NamespaceRoot(self._client, self._scope.with_headers(headers))

    def push_down(self, push_down: Optional[Dict[str, Any]] = None) -> "NamespaceRoot":
        return NamespaceRoot(self._client, self._scope.with_push_down(push_down))

    pushDown = push_down

    def __getitem__(self, schema_id: str) -> SchemaNamespace:
        return SchemaNamespace(self._client, schema_id, self._scope)

    def __getattr__(self, alias: str) -> SchemaNamespace:
        if alias.startswith("_"):
            raise AttributeError(alias)
        return SchemaNamespace(self._client, schema_id_from_alias(alias), self._scope)
