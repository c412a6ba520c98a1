"""Client: the composition root of the engine.

A :class:`Client` owns one session, the entity and option caches, the
observer and cache-change listener registries, the schema dispatcher and
the ``nlws`` namespace root. It is the object callers create and keep for
the lifetime of a logical connection.

Example::

    import asyncio
    from acc_client import Client, ClientConfig, ConnectionParameters

    async def main():
        params = ConnectionParameters.of_user_and_password(
            "https://acc.example.com", "admin", "secret", ClientConfig(trace_api_calls=True)
        )
        client = Client(params)
        await client.logon()
        print(await client.get_option("XtkDatabaseId"))
        query = client.nlws.xtkQueryDef.create({
            "schema": "nms:recipient", "operation": "select",
            "select": {"node": [{"expr": "@email"}]},
        })
        print(await query.executeQuery())
        await client.logoff()

    asyncio.run(main())
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, Optional, Sequence, Union

from . import caster, dom
from ._version import SDK_DESCRIPTION, SDK_NAME, __version__
from .cache import EntityCache, OptionCache, OptionValue, build_root_key
from .credentials import ConnectionParameters
from .dispatch import CallScope, Dispatcher, NamespaceRoot
from .errors import CampaignError, ErrorCode, bad_parameter
from .observers import CacheChangeListenerRegistry, ObserverRegistry
from .refresher import CacheRefresher
from .schema import parse_schema
from .session import USER_AGENT, SessionManager, SessionState
from .soap import CallContext, SoapMethodCall
from .tracing import TraceObserver
from .transport import HttpRequest, with_query

logger = logging.getLogger(__name__)

SCHEMA_ENTITY_TYPE = "xtk:schema"
OPTION_ENTITY_TYPE = "xtk:option"


def _option_value_field(type_code: int) -> str:
    if type_code in (caster.OPTION_TYPE_BYTE, caster.OPTION_TYPE_SHORT, caster.OPTION_TYPE_LONG):
        return "longValue"
    if type_code in (caster.OPTION_TYPE_FLOAT, caster.OPTION_TYPE_DOUBLE):
        return "doubleValue"
    if type_code in (caster.OPTION_TYPE_DATETIME, caster.OPTION_TYPE_DATE):
        return "timeStampValue"
    if type_code in (caster.OPTION_TYPE_MEMO, caster.OPTION_TYPE_MEMO_SHORT):
        return "memoValue"
    return "stringValue"


class Client:
    """Connection to one server.

    Args:
        connection_parameters: Endpoint, credentials and options.
    """

    def __init__(self, connection_parameters: ConnectionParameters) -> None:
        self.connection_parameters = connection_parameters
        self.config = connection_parameters.options
        self.representation = dom.check_representation(self.config.representation)

        self.observers = ObserverRegistry()
        self.cache_change_listeners = CacheChangeListenerRegistry()
        self.session = SessionManager(connection_parameters, self.observers, self)

        storage = self.config.durable_storage
        endpoint = connection_parameters.endpoint
        self.entity_cache = EntityCache(
            storage,
            build_root_key(__version__, endpoint, "XtkEntityCache"),
            ttl=self.config.entity_cache_ttl,
        )
        self.option_cache = OptionCache(
            storage,
            build_root_key(__version__, endpoint, "OptionCache"),
            ttl=self.config.option_cache_ttl,
        )
        self.entity_cache_refresher = CacheRefresher(self, self.entity_cache, SCHEMA_ENTITY_TYPE, "XtkEntityCache")
        self.option_cache_refresher = CacheRefresher(self, self.option_cache, OPTION_ENTITY_TYPE, "OptionCache")

        self.dispatcher = Dispatcher(self)
        self.nlws = NamespaceRoot(
            self, CallScope(representation=self.representation, push_down={})
        )
        if self.config.trace_api_calls:
            self.register_observer(TraceObserver())

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.logoff()
        await self.aclose()

    async def aclose(self) -> None:
        close = getattr(self.session.transport, "aclose", None)
        if close is not None:
            await close()

    def _representation(self, representation: Optional[str]) -> str:
        return dom.check_representation(representation or self.representation)

    # ---------------- Session -----------------
    async def logon(self) -> None:
        await self.session.logon()

    async def logoff(self) -> None:
        self.stop_refresh_caches()
        await self.session.logoff()

    def is_logged(self) -> bool:
        return self.session.is_logged()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def build_number(self) -> Optional[str]:
        return self.session.build_number

    def get_session_info(self, representation: Optional[str] = None) -> Any:
        return self.session.session_info(self._representation(representation))

    # ---------------- Internal calls -----------------
    async def _call(
        self,
        urn: str,
        method_name: str,
        write,
        read,
        internal: bool = True,
        representation: str = dom.XML,
    ) -> Any:
        call = self.session.new_soap_call(urn, method_name)
        write(call)
        context = CallContext(
            schema_id=urn,
            method_name=method_name,
            namespace=urn.split(":", 1)[0],
            representation=representation,
            internal=internal,
        )
        return await self.session.send_soap(call, context, read=read)

    async def invoke_internal(
        self,
        schema_id: str,
        method_name: str,
        args: Sequence[Any] = (),
        instance: Optional[ET.Element] = None,
    ) -> Any:
        """Invoke a schema method on the engine's behalf, in the ``xml`` representation."""
        scope = CallScope(representation=dom.XML, internal=True)
        result, _ = await self.dispatcher.invoke(schema_id, method_name, instance, args, scope)
        return result

    # ---------------- Options -----------------
    async def _fetch_option(self, name: str) -> OptionValue:
        def write(call: SoapMethodCall) -> None:
            call.write_string("name", name)

        def read(call: SoapMethodCall):
            value = call.get_next_string()
            type_ = call.get_next_byte()
            call.check_no_more_args()
            return value, type_

        raw_value, type_ = await self._call("xtk:session", "GetOption", write, read)
        return self.option_cache.put(name, raw_value, type_)

    async def get_option_value(self, name: str, use_cache: bool = True) -> OptionValue:
        if use_cache:
            cached = self.option_cache.get(name)
            if cached is not None:
                return cached
        return await self._fetch_option(name)

    async def get_option(self, name: str, use_cache: bool = True) -> Any:
        """Typed value of option ``name``; ``None`` when the option does not exist."""
        option = await self.get_option_value(name, use_cache)
        return option.value

    async def set_option(self, name: str, value: Any, description: Optional[str] = None) -> None:
        """Create or update an option, keeping its declared type when it exists."""
        existing = await self.get_option_value(name)
        type_code = existing.type if existing.found and existing.type else caster.OPTION_TYPE_STRING
        raw_value = caster.as_string(caster.as_typed(value, type_code))

        document = ET.Element("option")
        document.set("xtkschema", "xtk:option")
        document.set("_operation", "insertOrUpdate")
        document.set("_key", "@name")
        document.set("name", name)
        document.set("dataType", str(type_code))
        if description is not None:
            document.set("description", description)
        field_name = _option_value_field(type_code)
        if field_name == "memoValue":
            ET.SubElement(document, field_name).text = raw_value
        else:
            document.set(field_name, raw_value)

        def write(call: SoapMethodCall) -> None:
            call.write_document("doc", document)

        def read(call: SoapMethodCall) -> None:
            call.check_no_more_args()

        await self._call("xtk:session", "Write", write, read)
        self.option_cache.put(name, raw_value, type_code)

    # ---------------- Entities & schemas -----------------
    async def get_entity_if_more_recent(
        self,
        entity_type: str,
        full_name: str,
        representation: Optional[str] = None,
        internal: bool = False,
    ) -> Any:
        representation = self._representation(representation)

        def write(call: SoapMethodCall) -> None:
            call.write_string("pk", f"{entity_type}|{full_name}")
            call.write_string("md5", "")
            call.write_boolean("mustExist", False)

        def read(call: SoapMethodCall) -> Optional[ET.Element]:
            document = call.get_next_document()
            call.check_no_more_args()
            return document

        element = await self._call(
            "xtk:persist", "GetEntityIfMoreRecent", write, read, internal, representation
        )
        return dom.to_representation(element, representation)

    async def get_schema(
        self,
        schema_id: str,
        representation: Optional[str] = None,
        internal: bool = False,
    ) -> Any:
        """Schema ``schema_id`` (``"nms:recipient"``) or ``None`` if it does not exist."""
        representation = self._representation(representation)
        element = self.entity_cache.get(SCHEMA_ENTITY_TYPE, schema_id)
        if element is None:
            element = await self.get_entity_if_more_recent(
                SCHEMA_ENTITY_TYPE, schema_id, dom.XML, internal
            )
            if element is None:
                return None
            self.entity_cache.put(SCHEMA_ENTITY_TYPE, schema_id, element)
        return dom.to_representation(element, representation)

    async def get_sys_enum(self, name: str, schema_or_id: Union[str, ET.Element, Dict[str, Any], None] = None) -> Any:
        """Enumeration ``"ns:schema:enum"`` or ``(enum, schema id or schema value)``.

        Returns ``None`` when the schema has no such enumeration.
        """
        if schema_or_id is None:
            parts = name.split(":") if isinstance(name, str) else []
            if len(parts) != 3 or not all(parts):
                raise CampaignError(
                    f"Invalid enumeration name '{name}', expecting 'namespace:schema:enumeration'",
                    ErrorCode.INVALID_ENUM,
                )
            schema_or_id = f"{parts[0]}:{parts[1]}"
            name = parts[2]

        if isinstance(schema_or_id, str):
            schema_element = await self.get_schema(schema_or_id, dom.XML, internal=True)
            if schema_element is None:
                raise CampaignError(f"Schema '{schema_or_id}' not found", ErrorCode.INVALID_ENUM)
        elif isinstance(schema_or_id, ET.Element):
            schema_element = schema_or_id
        elif isinstance(schema_or_id, dict) and self.representation != dom.XML:
            schema_element = dom.from_representation("schema", schema_or_id, self.representation)
        else:
            raise CampaignError(
                f"Invalid schema for enumeration '{name}': expecting a schema id or a schema",
                ErrorCode.INVALID_ENUM,
            )
        enumeration = parse_schema(schema_element).get_enumeration(name)
        if enumeration is None:
            return None
        return dom.to_representation(enumeration, self.representation)

    # ---------------- Caches -----------------
    def clear_option_cache(self) -> None:
        self.option_cache.clear()

    def clear_entity_cache(self) -> None:
        schema_ids = self.entity_cache.cached_ids(SCHEMA_ENTITY_TYPE)
        self.entity_cache.clear()
        for schema_id in schema_ids:
            self.notify_cache_change_listeners(schema_id)

    def clear_all_caches(self) -> None:
        self.clear_entity_cache()
        self.clear_option_cache()

    def start_refresh_caches(self, interval: float = 10.0) -> None:
        """Start polling the server for modified schemas and options."""
        self.entity_cache_refresher.start(interval)
        self.option_cache_refresher.start(interval)

    def stop_refresh_caches(self) -> None:
        self.entity_cache_refresher.stop()
        self.option_cache_refresher.stop()

    # ---------------- Observers & listeners -----------------
    def register_observer(self, observer: Any) -> None:
        self.observers.register(observer)

    def unregister_observer(self, observer: Any) -> None:
        self.observers.unregister(observer)

    def unregister_all_observers(self) -> None:
        self.observers.unregister_all()

    def register_cache_change_listener(self, listener: Any) -> None:
        """Register ``listener`` and tell it about every schema already cached."""
        self.cache_change_listeners.register(listener)
        for schema_id in self.entity_cache.cached_ids(SCHEMA_ENTITY_TYPE):
            listener.invalidate_cache_item(schema_id)

    def unregister_cache_change_listener(self, listener: Any) -> None:
        self.cache_change_listeners.unregister(listener)

    def unregister_all_cache_change_listeners(self) -> None:
        self.cache_change_listeners.unregister_all()

    def notify_cache_change_listeners(self, schema_id: str) -> None:
        self.dispatcher.forget_schema(schema_id)
        self.cache_change_listeners.notify(schema_id)

    # ---------------- Plain HTTP endpoints -----------------
    def _http_request(self, path: str) -> HttpRequest:
        headers: Dict[str, str] = {"User-Agent": USER_AGENT}
        headers.update(self.session.sdk_headers())
        if self.session.security_token:
            headers["X-Security-Token"] = self.session.security_token
        if self.session.session_token:
            headers["Cookie"] = f"__sessiontoken={self.session.session_token}"
        options = self.session.request_options()
        return HttpRequest(
            url=with_query(f"{self.connection_parameters.endpoint.rstrip('/')}{path}", options),
            method="GET",
            headers=headers,
            options=options,
        )

    async def ping(self) -> Dict[str, Any]:
        """Server health (``/nl/jsp/ping.jsp``): ``{"status", "timestamp"}``."""
        body = await self.session.send_http(self._http_request("/nl/jsp/ping.jsp"))
        lines = body.split("\n")
        return {
            "status": lines[0].strip(),
            "timestamp": lines[1].strip() if len(lines) > 1 else None,
        }

    async def mc_ping(self) -> Dict[str, Any]:
        """Message center health (``/nl/jsp/mcPing.jsp``)."""
        body = await self.session.send_http(self._http_request("/nl/jsp/mcPing.jsp"))
        lines = body.split("\n")
        status = lines[0].strip()
        result: Dict[str, Any] = {
            "status": status,
            "timestamp": lines[1].strip() if len(lines) > 1 else None,
        }
        details = lines[2].strip() if len(lines) > 2 else ""
        if status.lower() == "error":
            result["error"] = details
        elif details:
            size, _, max_size = details.partition("/")
            result["eventQueueSize"] = size.strip()
            result["eventQueueMaxSize"] = max_size.strip() or None
        return result

    async def test(self) -> Dict[str, Any]:
        """Redirection server status (``/r/test``)."""
        body = await self.session.send_http(self._http_request("/r/test"))
        element = dom.parse(body)
        result: Dict[str, Any] = {}
        for name in ("status", "date", "build", "sha1", "instance", "sourceIP", "host", "localHost"):
            if name in element.attrib:
                result[name] = element.get(name)
        return result

    @staticmethod
    def get_sdk_version() -> Dict[str, str]:
        return {"version": __version__, "name": SDK_NAME, "description": SDK_DESCRIPTION}


async def init(connection_parameters: ConnectionParameters) -> Client:
    """Create a client (not logged on yet)."""
    if not isinstance(connection_parameters, ConnectionParameters):
        raise bad_parameter("Expecting ConnectionParameters")
    return Client(connection_parameters)
