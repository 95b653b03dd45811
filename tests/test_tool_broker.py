"""Tests for tool argument sanitization, the catalog and the broker."""

from __future__ import annotations

import httpx
import pytest

from dotivra.errors import UnknownToolError
from dotivra.tools.broker import (
    ToolBroker,
    failure_feedback,
    feedback_for,
    parse_tool_invocation,
    sanitize_args,
    sanitize_value,
    success_feedback,
)
from dotivra.tools.contracts import TOOL_REGISTRY, get_contract
from dotivra.tools.models import ToolInvocation, ToolResult

TOOLS_URL = "http://api.test/api/tools/execute"
FALLBACK_URL = "http://functions.test/api/tools/execute"


# ===================================================================
# Catalog
# ===================================================================

class TestToolCatalog:
    def test_closed_catalog(self):
        assert set(TOOL_REGISTRY) == {
            "get_document_content",
            "scan_document_content",
            "search_document_content",
            "append_document_content",
            "insert_document_content",
            "insert_document_content_at_location",
            "replace_document_content",
            "remove_document_content",
            "get_document_summary",
            "search_document_summary",
            "append_document_summary",
            "insert_document_summary",
            "replace_doument_summary",
            "remove_document_summary",
            "get_all_documents_metadata_within_project",
            "verify_document_change",
            "get_repo_structure",
            "get_repo_commits",
        }

    def test_lookup_is_case_sensitive(self):
        assert get_contract("get_document_content") is not None
        assert get_contract("Get_Document_Content") is None

    def test_validate_missing_required(self):
        errors = get_contract("search_document_content").validate_params({})
        assert errors == ["Missing required parameter: query"]

    def test_validate_enum(self):
        contract = get_contract("insert_document_content_at_location")
        errors = contract.validate_params({"target": "x", "position": "middle", "content": "c"})
        assert len(errors) == 1
        assert "must be one of" in errors[0]


# ===================================================================
# Sanitization
# ===================================================================

class TestSanitizeValue:
    def test_fenced_json_string(self):
        assert sanitize_value('```json\n{"a": 1}\n```') == {"a": 1}

    def test_fenced_html_string(self):
        assert sanitize_value("```html\n<p>x</p>\n```") == "<p>x</p>"

    def test_stringified_json(self):
        assert sanitize_value('{"from": 1, "to": 5}') == {"from": 1, "to": 5}

    def test_stringified_array(self):
        assert sanitize_value("[1, 2]") == [1, 2]

    def test_recursive(self):
        value = {"outer": ['```json\n{"inner": "[3]"}\n```']}
        assert sanitize_value(value) == {"outer": [{"inner": [3]}]}

    def test_plain_strings_untouched(self):
        assert sanitize_value("<h2>Intro</h2>") == "<h2>Intro</h2>"
        assert sanitize_value("{not json}") == "{not json}"

    def test_scalars_untouched(self):
        assert sanitize_value(3) == 3
        assert sanitize_value(None) is None

    def test_sanitize_args_keeps_dict(self):
        assert sanitize_args({"position": '{"from": 0, "to": 2}'}) == {"position": {"from": 0, "to": 2}}


class TestParseToolInvocation:
    def test_object_payload(self):
        inv = parse_tool_invocation(
            {"tool": "get_document_content", "args": {"reason": "r"}, "description": "Read"}
        )
        assert inv == ToolInvocation(tool="get_document_content", args={"reason": "r"}, description="Read")

    def test_string_payload(self):
        inv = parse_tool_invocation('{"tool": "get_document_summary", "args": "{}"}')
        assert inv.tool == "get_document_summary"
        assert inv.args == {}

    def test_missing_args_defaults_to_empty(self):
        assert parse_tool_invocation({"tool": "get_document_content"}).args == {}

    def test_unknown_tool(self):
        with pytest.raises(UnknownToolError) as exc_info:
            parse_tool_invocation({"tool": "delete_everything", "args": {}})
        assert exc_info.value.tool == "delete_everything"

    @pytest.mark.parametrize("payload", ["just text", {"args": {}}, {"tool": ""}, 42])
    def test_malformed(self, payload):
        with pytest.raises(ValueError):
            parse_tool_invocation(payload)

    def test_non_object_args(self):
        with pytest.raises(ValueError, match="must be an object"):
            parse_tool_invocation({"tool": "get_document_content", "args": [1]})


# ===================================================================
# Feedback
# ===================================================================

class TestFeedback:
    def test_success_text(self):
        text = success_feedback("get_document_content", {"content": "hi"})
        assert text.startswith('Tool "get_document_content" executed successfully.\n\nCOMPLETE RESULT:\n{')
        assert '"content": "hi"' in text
        assert text.endswith('If the task is complete, set nextStage to "done".')

    def test_failure_text(self):
        text = failure_feedback("append_document_content", "boom")
        assert text.startswith('Tool "append_document_content" FAILED with error: boom')
        assert 'Set nextStage to "toolUsed" to retry.' in text

    def test_failure_without_error(self):
        assert "Unknown error" in failure_feedback("x", None)

    def test_feedback_for_dispatches_on_success(self):
        assert "FAILED" in feedback_for(ToolResult(success=False, tool="t", error="e"))
        assert "successfully" in feedback_for(ToolResult(success=True, tool="t", result={}))


# ===================================================================
# Broker
# ===================================================================

class TestToolBroker:
    @pytest.mark.asyncio
    async def test_success_dispatch(self, broker, tool_endpoint):
        result = await broker.execute(
            ToolInvocation(tool="get_document_content", args={"reason": "look"}),
            document_id="doc-1",
        )
        assert result.success is True
        assert result.result == {"success": True, "echo": "get_document_content"}
        assert tool_endpoint.requests == [
            (TOOLS_URL, {"tool": "get_document_content", "args": {"reason": "look"}, "documentId": "doc-1"}),
        ]
        [record] = broker.history()
        assert record.success is True
        assert record.tool == "get_document_content"
        assert record.args == {"reason": "look"}

    @pytest.mark.asyncio
    async def test_default_document_id(self, tool_endpoint):
        client = httpx.AsyncClient(transport=httpx.MockTransport(tool_endpoint.handler))
        broker = ToolBroker(TOOLS_URL, document_id="doc-default", http_client=client)
        await broker.execute(ToolInvocation(tool="get_document_summary"))
        assert tool_endpoint.requests[0][1]["documentId"] == "doc-default"

    @pytest.mark.asyncio
    async def test_args_are_sanitized_before_dispatch(self, broker, tool_endpoint):
        await broker.execute(ToolInvocation(
            tool="remove_document_content",
            args={"position": '```json\n{"from": 1, "to": 4}\n```'},
        ))
        assert tool_endpoint.requests[0][1]["args"] == {"position": {"from": 1, "to": 4}}

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self, broker, tool_endpoint):
        tool_endpoint.responder = lambda body, url: httpx.Response(500, json={"error": "boom"})
        result = await broker.execute(ToolInvocation(tool="get_document_content"))
        assert result.success is False
        assert result.error == "Tool execution failed with status 500"
        assert broker.history()[0].success is False

    @pytest.mark.asyncio
    async def test_404_retries_fallback_with_raw_args(self, broker, tool_endpoint):
        def responder(body, url):
            if url == TOOLS_URL:
                return httpx.Response(404)
            return httpx.Response(200, json={"success": True})

        tool_endpoint.responder = responder
        raw = {"query": "Intro", "reason": '{"why": "check"}'}
        result = await broker.execute(ToolInvocation(tool="search_document_content", args=raw))

        assert result.success is True
        assert [url for url, _ in tool_endpoint.requests] == [TOOLS_URL, FALLBACK_URL]
        assert tool_endpoint.requests[0][1]["args"]["reason"] == {"why": "check"}
        assert tool_endpoint.requests[1][1]["args"] == raw
        assert len(broker.history()) == 1

    @pytest.mark.asyncio
    async def test_404_without_fallback(self, tool_endpoint):
        tool_endpoint.responder = lambda body, url: httpx.Response(404)
        client = httpx.AsyncClient(transport=httpx.MockTransport(tool_endpoint.handler))
        broker = ToolBroker(TOOLS_URL, http_client=client)
        result = await broker.execute(ToolInvocation(tool="get_document_content"))
        assert result.error == "Tool execution failed with status 404"
        assert len(tool_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        broker = ToolBroker(TOOLS_URL, http_client=client)
        result = await broker.execute(ToolInvocation(tool="get_document_content"))
        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_non_json_body(self, broker, tool_endpoint):
        tool_endpoint.responder = lambda body, url: httpx.Response(200, text="<html>oops</html>")
        result = await broker.execute(ToolInvocation(tool="get_document_content"))
        assert result.success is False
        assert result.error == "Tool endpoint returned a non-JSON body"

    @pytest.mark.asyncio
    async def test_unknown_tool_never_dispatched(self, broker, tool_endpoint):
        result = await broker.execute(ToolInvocation(tool="format_disk"))
        assert result.success is False
        assert "Unknown tool" in result.error
        assert tool_endpoint.requests == []
        assert broker.history()[0].tool == "format_disk"

    @pytest.mark.asyncio
    async def test_invalid_params_never_dispatched(self, broker, tool_endpoint):
        result = await broker.execute(ToolInvocation(tool="append_document_content", args={}))
        assert result.success is False
        assert result.error == "Missing required parameter: content"
        assert tool_endpoint.requests == []
        assert len(broker.history()) == 1

    @pytest.mark.asyncio
    async def test_timestamps_non_decreasing(self, tool_endpoint):
        ticks = iter([10.0, 5.0, 20.0])
        client = httpx.AsyncClient(transport=httpx.MockTransport(tool_endpoint.handler))
        broker = ToolBroker(TOOLS_URL, http_client=client, clock=lambda: next(ticks))
        for _ in range(3):
            await broker.execute(ToolInvocation(tool="get_document_content"))
        assert [r.timestamp for r in broker.history()] == [10000, 10000, 20000]

    @pytest.mark.asyncio
    async def test_history_is_a_copy(self, broker):
        await broker.execute(ToolInvocation(tool="get_document_content"))
        broker.history().clear()
        assert len(broker.history()) == 1

    def test_reject_records_failure(self, broker):
        result = broker.reject("bogus", {"a": 1}, "Malformed tool payload")
        assert result == ToolResult(success=False, tool="bogus", error="Malformed tool payload")
        assert broker.history()[0].args == {"a": 1}
