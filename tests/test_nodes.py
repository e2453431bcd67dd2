"""Tests for the baseline node catalog."""

import asyncio
import json
import smtplib
import time
from types import SimpleNamespace

import httpx
import pytest
from openai import OpenAIError

from nodeflow.config import AppConfig
from nodeflow.core.handler_registry import NodeHandlerRegistry
from nodeflow.models.core import ExecutionStatus
from nodeflow.nodes import register_default_handlers
from nodeflow.nodes.actions import HttpRequestHandler
from nodeflow.nodes.ai import OpenAIChatHandler
from nodeflow.nodes.communication import EmailSendHandler
from nodeflow.nodes.data import SqlQueryHandler, code_node, set_node
from nodeflow.nodes.flow import if_node
from nodeflow.nodes.triggers import schedule_trigger, webhook_trigger
from nodeflow.storage.database import create_database_engine


class FakeSMTP:
    """Stand-in for smtplib.SMTP recording every call."""

    instances = []

    def __init__(self, host, port, fail=False):
        self.host = host
        self.port = port
        self.fail = fail
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username, password))

    def send_message(self, message, from_addr=None, to_addrs=None):
        if self.fail:
            raise smtplib.SMTPException("relay denied")
        self.sent.append((message, from_addr, to_addrs))


class FakeCompletions:
    def __init__(self, content="Hi there", error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestTriggers:
    """Trigger nodes pass the execution input on."""

    @pytest.mark.asyncio
    async def test_webhook_trigger(self):
        result = await webhook_trigger("t", {}, {"order": 1})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["message"] == "Webhook triggered"
        assert result.output["data"] == {"order": 1}
        assert "timestamp" in result.output

    @pytest.mark.asyncio
    async def test_schedule_trigger_echoes_cron(self):
        result = await schedule_trigger("t", {"cron": "0 * * * *"}, {})

        assert result.output["message"] == "Schedule triggered"
        assert result.output["cron"] == "0 * * * *"


class TestHttpRequestNode:
    """http-request against a mocked transport."""

    @pytest.mark.asyncio
    async def test_get_request(self):
        seen = []

        def respond(request):
            seen.append(request)
            return httpx.Response(200, json={"items": [1, 2]})

        handler = HttpRequestHandler(transport=httpx.MockTransport(respond))
        result = await handler("h", {"url": "https://api.example.test/items",
                                     "headers": '{"X-Token": "abc"}'}, {"ignored": True})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["statusCode"] == 200
        assert result.output["body"] == {"items": [1, 2]}
        assert seen[0].method == "GET"
        assert seen[0].headers["X-Token"] == "abc"
        assert seen[0].content == b""

    @pytest.mark.asyncio
    async def test_post_sends_input_as_json(self):
        """Without an explicit body the node input is posted."""
        seen = []

        def respond(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, text="created")

        handler = HttpRequestHandler(transport=httpx.MockTransport(respond))
        result = await handler("h", {"url": "https://api.example.test/items", "method": "post"}, {"name": "x"})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["body"] == "created"
        assert seen == [{"name": "x"}]

    @pytest.mark.asyncio
    async def test_error_status_fails(self):
        handler = HttpRequestHandler(transport=httpx.MockTransport(lambda request: httpx.Response(503)))

        result = await handler("h", {"url": "https://api.example.test/down"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert result.error == "HTTP request failed with status 503"

    @pytest.mark.asyncio
    async def test_transport_error_fails(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        handler = HttpRequestHandler(transport=httpx.MockTransport(refuse))
        result = await handler("h", {"url": "https://api.example.test/"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert result.error.startswith("HTTP request error")

    @pytest.mark.asyncio
    async def test_missing_url(self):
        result = await HttpRequestHandler()("h", {}, {})

        assert result.status == ExecutionStatus.ERROR
        assert "url" in result.error

    @pytest.mark.asyncio
    async def test_invalid_headers(self):
        result = await HttpRequestHandler()("h", {"url": "https://x.test", "headers": "{not json"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert result.error.startswith("Invalid headers")


class TestFlowNodes:
    """The if node."""

    @pytest.mark.asyncio
    async def test_condition_true(self):
        result = await if_node("i", {"condition": "{amount} > 100"}, {"amount": 150})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["conditionResult"] is True
        assert result.output["nextPath"] == "true"
        assert result.output["amount"] == 150

    @pytest.mark.asyncio
    async def test_condition_false(self):
        result = await if_node("i", {"condition": "status == 'paid'"}, {"status": "open"})

        assert result.output["conditionResult"] is False
        assert result.output["nextPath"] == "false"

    @pytest.mark.asyncio
    async def test_missing_condition(self):
        result = await if_node("i", {}, {})

        assert result.status == ExecutionStatus.ERROR

    @pytest.mark.asyncio
    async def test_unsafe_condition_fails_node(self):
        result = await if_node("i", {"condition": "__import__('os')"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert "Unsupported" in result.error


class TestDataNodes:
    """code, set and postgres nodes."""

    @pytest.mark.asyncio
    async def test_code_node_computes_fields(self):
        params = {"expressions": {"total": "price * quantity", "size": "len_hint", "first": "input['items'][0]"}}
        data = {"price": 3, "quantity": 4, "len_hint": "big", "items": ["a"]}

        result = await code_node("c", params, data)

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["total"] == 12
        assert result.output["first"] == "a"
        assert result.output["price"] == 3
        assert result.output["processedBy"] == "code-node"

    @pytest.mark.asyncio
    async def test_code_node_reports_bad_expression(self):
        result = await code_node("c", {"expressions": {"x": "undefined_name + 1"}}, {})

        assert result.status == ExecutionStatus.ERROR
        assert result.error.startswith("Field 'x'")

    @pytest.mark.asyncio
    async def test_set_node_key_value(self):
        result = await set_node("s", {"key": "flag", "value": True}, {"a": 1})

        assert result.output == {"a": 1, "flag": True}

    @pytest.mark.asyncio
    async def test_set_node_values_mapping(self):
        result = await set_node("s", {"values": {"x": 1, "y": 2}}, None)

        assert result.output == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_set_node_requires_key(self):
        result = await set_node("s", {}, {})

        assert result.status == ExecutionStatus.ERROR
        assert result.error == "Set node requires a 'key' parameter"

    @pytest.mark.asyncio
    async def test_sql_query_node(self):
        handler = SqlQueryHandler(database_url="sqlite:///:memory:", engine_factory=create_database_engine)
        try:
            await handler("q", {"query": "CREATE TABLE items (name TEXT)"}, {})
            inserted = await handler(
                "q", {"query": "INSERT INTO items (name) VALUES (:name)", "params": {"name": "widget"}}, {}
            )
            selected = await handler("q", {"query": "SELECT name FROM items"}, {})
        finally:
            handler.dispose()

        assert inserted.output["result"] == 1
        assert selected.status == ExecutionStatus.SUCCESS
        assert selected.output["message"] == "Query executed"
        assert selected.output["result"] == [{"name": "widget"}]

    @pytest.mark.asyncio
    async def test_sql_query_error(self):
        handler = SqlQueryHandler(database_url="sqlite:///:memory:", engine_factory=create_database_engine)
        try:
            result = await handler("q", {"query": "SELECT * FROM missing_table"}, {})
        finally:
            handler.dispose()

        assert result.status == ExecutionStatus.ERROR
        assert result.error.startswith("Query failed")

    @pytest.mark.asyncio
    async def test_sql_query_builds_one_engine_per_url(self, tmp_path):
        """Concurrent queries against one URL share a single engine."""
        built = []

        def slow_factory(url):
            built.append(url)
            time.sleep(0.05)
            return create_database_engine(url)

        handler = SqlQueryHandler(database_url=f"sqlite:///{tmp_path / 'query.db'}", engine_factory=slow_factory)
        try:
            results = await asyncio.gather(*(handler("q", {"query": "SELECT 1 AS one"}, {}) for _ in range(5)))
        finally:
            handler.dispose()

        assert all(result.output["result"] == [{"one": 1}] for result in results)
        assert len(built) == 1

    @pytest.mark.asyncio
    async def test_sql_query_requires_query(self):
        result = await SqlQueryHandler(database_url="sqlite:///:memory:")("q", {}, {})

        assert result.status == ExecutionStatus.ERROR


class TestEmailNode:
    """email-send against a fake SMTP server."""

    @pytest.mark.asyncio
    async def test_sends_message(self):
        FakeSMTP.instances.clear()
        handler = EmailSendHandler(
            host="smtp.example.test", username="bot@example.test", password="secret",
            smtp_factory=FakeSMTP
        )

        result = await handler("e", {"to": "a@example.test, b@example.test", "subject": "Hi", "body": "Hello"}, {})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output["message"] == "Email sent successfully"
        server = FakeSMTP.instances[0]
        assert (server.host, server.port) == ("smtp.example.test", 587)
        assert server.calls == ["starttls", ("login", "bot@example.test", "secret")]
        message, from_addr, to_addrs = server.sent[0]
        assert from_addr == "bot@example.test"
        assert to_addrs == ["a@example.test", "b@example.test"]
        assert message["Subject"] == "Hi"

    @pytest.mark.asyncio
    async def test_smtp_failure(self):
        handler = EmailSendHandler(
            host="smtp.example.test", sender="bot@example.test",
            smtp_factory=lambda host, port: FakeSMTP(host, port, fail=True)
        )

        result = await handler("e", {"to": "a@example.test"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert "relay denied" in result.error

    @pytest.mark.asyncio
    async def test_requires_recipient_and_host(self):
        assert (await EmailSendHandler(host="smtp.example.test")("e", {}, {})).status == ExecutionStatus.ERROR
        assert (await EmailSendHandler()("e", {"to": "a@example.test"}, {})).status == ExecutionStatus.ERROR


class TestOpenAINode:
    """openai against a fake client."""

    @pytest.mark.asyncio
    async def test_prompt_is_filled_from_input(self):
        completions = FakeCompletions(content="Summary")
        handler = OpenAIChatHandler(client=fake_openai_client(completions))

        result = await handler("ai", {"prompt": "Summarize {text}", "temperature": 0.2}, {"text": "a long story"})

        assert result.status == ExecutionStatus.SUCCESS
        assert result.output == {"response": "Summary", "model": "gpt-4o-mini", "prompt": "Summarize a long story"}
        assert completions.requests[0]["messages"] == [{"role": "user", "content": "Summarize a long story"}]
        assert completions.requests[0]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_api_error(self):
        handler = OpenAIChatHandler(client=fake_openai_client(FakeCompletions(error=OpenAIError("quota exceeded"))))

        result = await handler("ai", {"prompt": "Hello", "model": "gpt-4o"}, {})

        assert result.status == ExecutionStatus.ERROR
        assert "quota exceeded" in result.error

    @pytest.mark.asyncio
    async def test_missing_placeholder(self):
        handler = OpenAIChatHandler(client=fake_openai_client(FakeCompletions()))

        result = await handler("ai", {"prompt": "Hello {name}"}, {})

        assert result.status == ExecutionStatus.ERROR


class TestDefaultCatalog:
    """register_default_handlers."""

    def test_registers_baseline_types(self):
        registry = register_default_handlers(NodeHandlerRegistry(), AppConfig(database_url="sqlite:///:memory:"))

        assert registry.list_types() == sorted([
            "webhook-trigger", "schedule-trigger", "http-request", "code", "set",
            "if", "email-send", "postgres", "openai",
        ])

    def test_replace_flag(self):
        registry = NodeHandlerRegistry()
        registry.register("set", set_node)

        register_default_handlers(registry, replace=True)

        assert len(registry) == 9
