"""
Tests for conductor.execution.actions.

HTTP actions run against ``httpx.MockTransport``; no network is touched.
"""

import json

import httpx
import pytest

from conductor.core.errors import TaskActionError
from conductor.execution.actions import (
    ActionRegistry,
    HttpAction,
    check_result,
    describe_action,
)

URL = "https://automation.example.com/hooks/welcome"


def _transport(handler):
    return httpx.MockTransport(handler)


class TestDescribeAction:
    def test_labels(self):
        assert describe_action("crm-log") == "crm-log"
        assert describe_action({"type": "http", "url": URL}) == f"POST {URL}"
        assert describe_action({"type": "http", "url": URL, "method": "put"}) == f"PUT {URL}"
        assert describe_action({"type": "callable", "name": "crm-log"}) == "crm-log"


class TestCheckResult:
    def test_passes_through_success(self):
        body = {"status": "success", "id": 7}
        assert check_result(body, "x") is body
        assert check_result("plain", "x") == "plain"

    def test_error_envelope_is_retryable_by_default(self):
        with pytest.raises(TaskActionError, match="x: quota exceeded") as exc_info:
            check_result({"status": "error", "error": "quota exceeded"}, "x")
        assert exc_info.value.retryable is True

    def test_error_envelope_can_be_final(self):
        with pytest.raises(TaskActionError) as exc_info:
            check_result({"status": "error", "message": "bad input", "retryable": False}, "x")
        assert exc_info.value.retryable is False


class TestRegistry:
    def test_register_and_resolve_by_name(self):
        registry = ActionRegistry()
        registry.register("double", lambda payload: {"value": payload["n"] * 2})

        fn = registry.resolve("double")

        assert fn({"n": 4}, 5.0) == {"value": 8}
        assert fn.__name__ == "double"

    def test_resolve_callable_mapping(self):
        registry = ActionRegistry()
        registry.register("ping", lambda payload: "pong")
        assert registry.resolve({"type": "callable", "name": "ping"})({}, 1.0) == "pong"

    def test_bookkeeping(self):
        registry = ActionRegistry()
        registry.register("b", lambda p: None)
        registry.register("a", lambda p: None)

        assert registry.names() == ["a", "b"]
        assert "a" in registry
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        assert "a" not in registry

    def test_rejects_empty_name(self):
        with pytest.raises(ValueError):
            ActionRegistry().register("", lambda p: None)

    def test_unknown_handler_is_final(self):
        with pytest.raises(TaskActionError, match="No handler registered") as exc_info:
            ActionRegistry().resolve("missing")
        assert exc_info.value.retryable is False

    def test_unsupported_type(self):
        with pytest.raises(TaskActionError, match="Unsupported action type: grpc"):
            ActionRegistry().resolve({"type": "grpc", "target": "x"})

    def test_http_requires_url(self):
        with pytest.raises(TaskActionError, match="requires a url"):
            ActionRegistry().resolve({"type": "http"})

    def test_unexpected_exception_is_wrapped(self):
        registry = ActionRegistry()

        def broken(payload):
            raise RuntimeError("kaput")

        registry.register("broken", broken)

        with pytest.raises(TaskActionError, match="broken: RuntimeError: kaput") as exc_info:
            registry.resolve("broken")({}, 1.0)
        assert exc_info.value.retryable is False
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_connection_error_is_retryable(self):
        registry = ActionRegistry()

        def flaky(payload):
            raise ConnectionError("reset by peer")

        registry.register("flaky", flaky)

        with pytest.raises(TaskActionError) as exc_info:
            registry.resolve("flaky")({}, 1.0)
        assert exc_info.value.retryable is True

    def test_handler_error_envelope(self):
        registry = ActionRegistry()
        registry.register("soft-fail", lambda p: {"status": "error", "error": "busy"})

        with pytest.raises(TaskActionError, match="soft-fail: busy"):
            registry.resolve("soft-fail")({}, 1.0)

    def test_http_actions_use_registry_transport(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "success"})

        registry = ActionRegistry(http_transport=_transport(handler))
        fn = registry.resolve({"type": "http", "url": URL, "headers": {"X-Token": "t"}})

        assert fn({"user": "u1"}, 5.0) == {"status": "success"}
        assert seen[0].headers["X-Token"] == "t"


class TestHttpAction:
    def test_posts_json_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "message_id": "m-1"})

        action = HttpAction(url=URL, transport=_transport(handler))

        result = action({"template": "welcome"}, 5.0)

        assert result == {"status": "success", "message_id": "m-1"}
        assert captured == {"method": "POST", "body": {"template": "welcome"}}

    @pytest.mark.parametrize(
        ("status", "retryable"),
        [(500, True), (503, True), (429, True), (408, True), (400, False), (404, False)],
    )
    def test_http_status_classification(self, status, retryable):
        action = HttpAction(url=URL, transport=_transport(lambda r: httpx.Response(status)))

        with pytest.raises(TaskActionError, match=f"HTTP {status}") as exc_info:
            action({}, 5.0)

        assert exc_info.value.retryable is retryable
        assert exc_info.value.context.http_status == status
        assert exc_info.value.context.url == URL

    def test_connect_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TaskActionError, match="ConnectError") as exc_info:
            HttpAction(url=URL, transport=_transport(handler))({}, 5.0)
        assert exc_info.value.retryable is True

    def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(TaskActionError, match="request timed out") as exc_info:
            HttpAction(url=URL, transport=_transport(handler))({}, 5.0)
        assert exc_info.value.retryable is True

    def test_non_json_body(self):
        action = HttpAction(url=URL, transport=_transport(lambda r: httpx.Response(200, text="ok")))
        assert action({}, 5.0) == {"status_code": 200, "text": "ok"}

    def test_error_envelope_in_body(self):
        def handler(request):
            return httpx.Response(200, json={"status": "error", "error": "template missing"})

        with pytest.raises(TaskActionError, match="template missing"):
            HttpAction(url=URL, transport=_transport(handler))({}, 5.0)
