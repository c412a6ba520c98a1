"""Tests for credential masking and the trace observer."""

import logging
from unittest.mock import Mock

from acc_client.soap import CallContext
from acc_client.tracing import TraceObserver, mask_sensitive
from acc_client.transport import HttpRequest


class TestMaskSensitive:
    def test_scalars(self):
        assert mask_sensitive(None) is None
        assert mask_sensitive(3) == 3
        assert mask_sensitive("Hello  \n\r\t") == "Hello"

    def test_masks_tokens_in_envelopes(self):
        text = (
            '<sessiontoken xsi:type="xsd:string">___abc___</sessiontoken>'
            '<password xsi:type="xsd:string">secret</password>'
            "<pstrSessionToken xsi:type='xsd:string'>___def___</pstrSessionToken>"
            "<pstrSecurityToken xsi:type='xsd:string'>@sec==</pstrSecurityToken>"
        )
        assert mask_sensitive(text) == (
            '<sessiontoken xsi:type="xsd:string">***</sessiontoken>'
            '<password xsi:type="xsd:string">***</password>'
            "<pstrSessionToken xsi:type='xsd:string'>***</pstrSessionToken>"
            "<pstrSecurityToken xsi:type='xsd:string'>***</pstrSecurityToken>"
        )

    def test_masks_every_occurrence(self):
        text = "<X-Security-Token>a</X-Security-Token><X-Security-Token>b</X-Security-Token>"
        assert mask_sensitive(text) == "<X-Security-Token>***</X-Security-Token><X-Security-Token>***</X-Security-Token>"

    def test_unterminated_section_is_left_alone(self):
        assert mask_sensitive("<X-Security-Token>abc") == "<X-Security-Token>abc"

    def test_headers(self):
        headers = {
            "x-security-token": "@abc",
            "Cookie": "__sessiontoken=___abc___; other=1",
            "SoapAction": "xtk:session#Logon",
        }
        assert mask_sensitive(headers) == {
            "x-security-token": "***",
            "Cookie": "__sessiontoken=***; other=1",
            "SoapAction": "xtk:session#Logon",
        }

    def test_returns_copies(self):
        headers = {"X-Security-Token": "@abc"}
        values = ["a ", headers]
        masked = mask_sensitive(values)
        assert masked == ["a", {"X-Security-Token": "***"}]
        assert headers == {"X-Security-Token": "@abc"}


class TestTraceObserver:
    def test_logs_masked_soap_calls(self):
        log = Mock(spec=logging.Logger)
        observer = TraceObserver(log)
        context = CallContext(schema_id="xtk:session", method_name="Logon")
        context.request = HttpRequest(
            url="http://acc-sdk:8080/nl/jsp/soaprouter.jsp",
            data='<password xsi:type="xsd:string">secret</password>',
        )
        observer.on_soap_call(context)
        message = log.info.call_args.args[0]
        assert message.startswith("SOAP//request xtk:session#Logon")
        assert "secret" not in message

    def test_logs_http_calls(self, caplog):
        request = HttpRequest(url="http://acc-sdk:8080/nl/jsp/ping.jsp", headers={"X-Security-Token": "@abc"})
        observer = TraceObserver()
        with caplog.at_level(logging.INFO, logger="acc_client.tracing"):
            observer.on_http_call(request)
            observer.on_http_call_success(request, "OK\n2024-01-01 00:00:00\n")
        assert "HTTP//request GET http://acc-sdk:8080/nl/jsp/ping.jsp" in caplog.text
        assert "@abc" not in caplog.text
        assert "HTTP//response GET" in caplog.text
