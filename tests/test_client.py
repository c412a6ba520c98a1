"""Tests for the Client composition root."""

import logging
import xml.etree.ElementTree as ET
from unittest.mock import Mock

import pytest

from acc_client import Client, ClientConfig, ConnectionParameters, MemoryStorage, init
from acc_client import dom
from acc_client.errors import CampaignError, ErrorCode
from acc_client.observers import Observer
from acc_client.transport import TransportError

from fixtures import (
    EMPTY_ENTITY_RESPONSE,
    NMS_RECIPIENT_SCHEMA,
    URL,
    WRITE_RESPONSE,
    entity_response,
    get_option_response,
    sent_requests,
)


class TestOptions:
    """Option lookups, caching and updates."""

    @pytest.mark.asyncio
    async def test_options_are_cached(self, client, transport):
        transport.side_effect = [get_option_response("uFE80", 6), get_option_response("uFE81", 6)]
        assert await client.get_option("XtkDatabaseId") == "uFE80"
        assert await client.get_option("XtkDatabaseId") == "uFE80"
        assert transport.await_count == 1
        assert await client.get_option("XtkDatabaseId", use_cache=False) == "uFE81"
        assert transport.await_count == 2

    @pytest.mark.asyncio
    async def test_typed_option(self, client, transport):
        transport.side_effect = [get_option_response("30", 3)]
        assert await client.get_option("NmsBroadcast_MaxDelayPerTransac") == 30
        option = await client.get_option_value("NmsBroadcast_MaxDelayPerTransac")
        assert option.type == 3
        assert option.raw_value == "30"

    @pytest.mark.asyncio
    async def test_missing_option_is_cached(self, client, transport):
        transport.side_effect = [get_option_response("", 0)]
        assert await client.get_option("Missing") is None
        assert await client.get_option("Missing") is None
        assert transport.await_count == 1

    @pytest.mark.asyncio
    async def test_clear_option_cache(self, client, transport):
        transport.side_effect = [get_option_response("a", 6), get_option_response("b", 6)]
        await client.get_option("Opt")
        client.clear_option_cache()
        assert await client.get_option("Opt") == "b"

    @pytest.mark.asyncio
    async def test_set_option_keeps_existing_type(self, client, transport):
        transport.side_effect = [get_option_response("5", 1), WRITE_RESPONSE]
        await client.set_option("NmsMaxRetries", "7")

        request = sent_requests(transport)[1]
        assert request.headers["SoapAction"] == "xtk:session#Write"
        assert (
            '<option xtkschema="xtk:option" _operation="insertOrUpdate" _key="@name"'
            ' name="NmsMaxRetries" dataType="1" longValue="7"/>'
        ) in request.data
        assert await client.get_option("NmsMaxRetries") == 7
        assert transport.await_count == 2

    @pytest.mark.asyncio
    async def test_set_new_option(self, client, transport):
        transport.side_effect = [get_option_response("", 0), WRITE_RESPONSE]
        await client.set_option("NewOption", "Hello", description="A new option")
        data = sent_requests(transport)[1].data
        assert 'dataType="6"' in data
        assert 'description="A new option"' in data
        assert 'stringValue="Hello"' in data
        assert await client.get_option("NewOption") == "Hello"

    @pytest.mark.asyncio
    async def test_set_memo_option(self, client, transport):
        transport.side_effect = [get_option_response("old", 12), WRITE_RESPONSE]
        await client.set_option("MemoOption", "new text")
        assert "<memoValue>new text</memoValue>" in sent_requests(transport)[1].data


class TestSchemas:
    @pytest.mark.asyncio
    async def test_get_schema_is_cached(self, client, transport):
        transport.side_effect = [entity_response(NMS_RECIPIENT_SCHEMA)]
        schema = await client.get_schema("nms:recipient")
        assert schema["namespace"] == "nms"
        assert schema["name"] == "recipient"
        element = await client.get_schema("nms:recipient", "xml")
        assert isinstance(element, ET.Element)
        assert transport.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_schema(self, client, transport):
        transport.side_effect = [EMPTY_ENTITY_RESPONSE]
        assert await client.get_schema("nms:missing") is None

    @pytest.mark.asyncio
    async def test_get_entity_if_more_recent(self, client, transport):
        transport.side_effect = [entity_response("<form name='recipient' namespace='nms'/>")]
        form = await client.get_entity_if_more_recent("xtk:form", "nms:recipient", "BadgerFish")
        assert form == {"@name": "recipient", "@namespace": "nms"}
        data = sent_requests(transport)[0].data
        assert '<pk xsi:type="xsd:string">xtk:form|nms:recipient</pk>' in data
        assert '<mustExist xsi:type="xsd:boolean">false</mustExist>' in data

    @pytest.mark.asyncio
    async def test_schemas_survive_in_durable_storage(self, make_client, transport):
        storage = MemoryStorage()
        transport.side_effect = [entity_response(NMS_RECIPIENT_SCHEMA)]
        first = make_client(storage=storage)
        await first.logon()
        await first.get_schema("nms:recipient")

        second = make_client(storage=storage)
        await second.logon()
        assert (await second.get_schema("nms:recipient"))["label"] == "Recipients"
        assert transport.await_count == 1


class TestSysEnum:
    @pytest.fixture
    def recipient_schema(self, client):
        element = dom.parse(NMS_RECIPIENT_SCHEMA)
        client.entity_cache.put("xtk:schema", "nms:recipient", element)
        return element

    @pytest.mark.asyncio
    async def test_qualified_name(self, client, recipient_schema):
        gender = await client.get_sys_enum("nms:recipient:gender")
        assert gender["name"] == "gender"
        assert [value["name"] for value in gender["value"]] == ["unknown", "male", "female"]

    @pytest.mark.asyncio
    async def test_name_and_schema(self, client, recipient_schema):
        assert (await client.get_sys_enum("gender", "nms:recipient"))["basetype"] == "byte"
        assert (await client.get_sys_enum("gender", recipient_schema))["default"] == "0"
        schema_json = dom.to_json(recipient_schema, dom.SIMPLE_JSON)
        assert (await client.get_sys_enum("gender", schema_json))["name"] == "gender"

    @pytest.mark.asyncio
    async def test_missing_enumeration(self, client, recipient_schema):
        assert await client.get_sys_enum("nms:recipient:missing") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, schema", [("gender", None), ("nms:recipient:", None), ("gender", 42)])
    async def test_invalid_arguments(self, client, recipient_schema, name, schema):
        with pytest.raises(CampaignError) as exc_info:
            await client.get_sys_enum(name, schema)
        assert exc_info.value.error_code == ErrorCode.INVALID_ENUM

    @pytest.mark.asyncio
    async def test_missing_schema(self, client, transport):
        transport.side_effect = [EMPTY_ENTITY_RESPONSE]
        with pytest.raises(CampaignError) as exc_info:
            await client.get_sys_enum("nms:missing:gender")
        assert exc_info.value.error_code == ErrorCode.INVALID_ENUM


class TestCacheChangeListeners:
    @pytest.mark.asyncio
    async def test_registration_catches_up_on_cached_schemas(self, client):
        client.entity_cache.put("xtk:schema", "nms:recipient", ET.Element("schema"))
        listener = Mock()
        client.register_cache_change_listener(listener)
        listener.invalidate_cache_item.assert_called_once_with("nms:recipient")

    @pytest.mark.asyncio
    async def test_clear_entity_cache_notifies_listeners(self, client):
        listener = Mock()
        client.register_cache_change_listener(listener)
        client.entity_cache.put("xtk:schema", "nms:recipient", ET.Element("schema"))
        client.clear_entity_cache()
        listener.invalidate_cache_item.assert_called_once_with("nms:recipient")
        assert client.entity_cache.get("xtk:schema", "nms:recipient") is None

    @pytest.mark.asyncio
    async def test_unregister(self, client):
        listener = Mock()
        client.register_cache_change_listener(listener)
        client.unregister_cache_change_listener(listener)
        client.notify_cache_change_listeners("nms:recipient")
        listener.invalidate_cache_item.assert_not_called()
        client.register_cache_change_listener(listener)
        client.unregister_all_cache_change_listeners()
        assert len(client.cache_change_listeners) == 0


class TestHttpEndpoints:
    @pytest.mark.asyncio
    async def test_ping(self, client, transport):
        transport.side_effect = ["OK\n2024-01-02 03:04:05.678Z\n"]
        assert await client.ping() == {"status": "OK", "timestamp": "2024-01-02 03:04:05.678Z"}
        request = sent_requests(transport)[0]
        assert request.method == "GET"
        assert request.url == "http://acc-sdk:8080/nl/jsp/ping.jsp"
        assert request.headers["Cookie"] == "__sessiontoken=$session_token$"
        assert request.headers["X-Query-Source"] == "acc-client 0.1.0"

    @pytest.mark.asyncio
    async def test_mc_ping(self, client, transport):
        transport.side_effect = [
            "Ok\n2024-01-02 03:04:05.678Z\n3/400",
            "Error\n2024-01-02 03:04:05.678Z\nThe message center is not available",
        ]
        assert await client.mc_ping() == {
            "status": "Ok",
            "timestamp": "2024-01-02 03:04:05.678Z",
            "eventQueueSize": "3",
            "eventQueueMaxSize": "400",
        }
        assert (await client.mc_ping())["error"] == "The message center is not available"

    @pytest.mark.asyncio
    async def test_redirection_test(self, client, transport):
        transport.side_effect = ['<redir status="OK" date="2024-01-02 03:04:05" build="9356" host="localhost" localHost="acc"/>']
        assert await client.test() == {
            "status": "OK",
            "date": "2024-01-02 03:04:05",
            "build": "9356",
            "host": "localhost",
            "localHost": "acc",
        }
        assert sent_requests(transport)[0].url.endswith("/r/test")

    @pytest.mark.asyncio
    async def test_http_failure(self, client, transport):
        observer = Mock(spec=Observer)
        client.register_observer(observer)
        transport.side_effect = TransportError(503, "Service Unavailable", "")
        with pytest.raises(CampaignError) as exc_info:
            await client.ping()
        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == ErrorCode.TRANSPORT_FAILURE
        assert exc_info.value.method_name == "/nl/jsp/ping.jsp"
        observer.on_http_call.assert_called_once()
        observer.on_http_call_failure.assert_called_once()


class TestLifecycle:
    def test_sdk_version(self):
        assert Client.get_sdk_version() == {
            "version": "0.1.0",
            "name": "acc-client",
            "description": "Python client for the Adobe Campaign Classic SOAP API",
        }

    @pytest.mark.asyncio
    async def test_init(self, transport):
        client = await init(ConnectionParameters.of_session_token(URL, "tok", ClientConfig(transport=transport)))
        assert isinstance(client, Client)
        assert not client.is_logged()
        with pytest.raises(CampaignError):
            await init("http://acc-sdk:8080")

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_client, transport):
        async with make_client() as client:
            await client.logon()
            assert client.is_logged()
        assert not client.is_logged()
        transport.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_logoff_stops_cache_refreshers(self, client):
        client.start_refresh_caches(3600)
        assert client.entity_cache_refresher.is_running()
        assert client.option_cache_refresher.is_running()
        await client.logoff()
        assert not client.entity_cache_refresher.is_running()
        assert not client.option_cache_refresher.is_running()

    @pytest.mark.asyncio
    async def test_options_shared_across_clients_and_schemes(self, transport):
        storage = MemoryStorage()
        transport.side_effect = [get_option_response("uFE80", 6)]
        http = Client(ConnectionParameters.of_session_token(
            "http://acc-sdk:8080", "tok", ClientConfig(transport=transport, storage=storage)
        ))
        await http.logon()
        await http.get_option("XtkDatabaseId")

        https = Client(ConnectionParameters.of_session_token(
            "https://acc-sdk:8080", "tok", ClientConfig(transport=transport, storage=storage)
        ))
        await https.logon()
        assert await https.get_option("XtkDatabaseId") == "uFE80"
        assert transport.await_count == 1

    @pytest.mark.asyncio
    async def test_trace_api_calls(self, make_client, transport, caplog):
        transport.side_effect = [get_option_response("uFE80", 6)]
        client = make_client(trace_api_calls=True)
        await client.logon()
        with caplog.at_level(logging.INFO, logger="acc_client.tracing"):
            await client.get_option("XtkDatabaseId")
        assert "SOAP//request xtk:session#GetOption" in caplog.text
        assert "SOAP//response xtk:session#GetOption" in caplog.text
        assert "$session_token$" not in caplog.text

    @pytest.mark.asyncio
    async def test_unregister_observers(self, client, transport):
        observer = Mock(spec=Observer)
        client.register_observer(observer)
        client.unregister_observer(observer)
        transport.side_effect = [get_option_response("v", 6)]
        await client.get_option("Opt")
        observer.on_soap_call.assert_not_called()
        client.register_observer(observer)
        client.unregister_all_observers()
        assert len(client.observers) == 0
