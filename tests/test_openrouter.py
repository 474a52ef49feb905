"""Tests for the OpenRouter provider against a fake completions endpoint."""

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from openera_mcp.errors import ModelInvocationFailed
from openera_mcp.llm.provider import OpenRouterProvider
from openera_mcp.mcp.aggregator import ToolAggregator

from conftest import stdio_server


def sse(chunks):
    lines = [": OPENROUTER PROCESSING\n\n"]
    lines.extend(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


TOOL_STEP = [
    {"choices": [{"delta": {"role": "assistant", "content": "Let me look. "}}]},
    {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_1", "type": "function", "function": {"name": "read_file", "arguments": ""}}]}}]},
    {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "{\"path\": "}}]}}]},
    {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "\"/tmp\"}"}}]}}]},
    {"choices": [{"delta": {}, "finish_reason": "tool_calls"}], "usage": {"prompt_tokens": 10, "completion_tokens": 5}},
]

ANSWER_STEP = [
    {"choices": [{"delta": {"content": "It contains "}}]},
    {"choices": [{"delta": {"content": "one file."}}]},
    {"choices": [{"delta": {}, "finish_reason": "stop"}], "usage": {"prompt_tokens": 20, "completion_tokens": 4}},
]


def make_completions_app(received, steps=None, status=200):
    steps = list(steps or [])

    async def completions(request: web.Request) -> web.StreamResponse:
        payload = await request.json()
        received.append({"payload": payload, "headers": dict(request.headers)})
        if status != 200:
            return web.json_response({"error": {"message": "No auth credentials found"}}, status=status)
        if not payload.get("stream"):
            return web.json_response({"choices": [{"message": {"role": "assistant", "content": "Better prompt"}}]})

        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await response.write(sse(steps.pop(0)))
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_post("/api/v1/chat/completions", completions)
    return app


class TestStreaming:
    @pytest.mark.asyncio
    async def test_tool_call_round_trip(self, registry, factory, fake_servers):
        fake_servers.add("files", tools=["read_file"])
        catalog, _ = await ToolAggregator(registry, factory).aggregate([stdio_server("files")])
        received = []
        finished = []

        async def on_finish(result):
            finished.append(result)

        async with TestServer(make_completions_app(received, [TOOL_STEP, ANSWER_STEP])) as server:
            provider = OpenRouterProvider(
                api_key="default-key",
                api_base=str(server.make_url("/api/v1")),
                app_title="Openera Agentic",
            )
            events = [
                event
                async for event in provider.stream(
                    [{"role": "user", "content": "What's in /tmp?"}],
                    "google/gemini-2.5-pro-preview",
                    system="You are helpful.",
                    tools=catalog,
                    api_key="sk-user",
                    on_finish=on_finish,
                )
            ]

        assert [e.type for e in events] == [
            "text-delta",
            "tool-call",
            "tool-result",
            "text-delta",
            "text-delta",
            "finish",
        ]
        assert events[1].tool_name == "read_file"
        assert events[1].args == {"path": "/tmp"}
        assert fake_servers.sessions["files"][0].calls == [("read_file", {"path": "/tmp"})]

        first = received[0]
        assert first["headers"]["Authorization"] == "Bearer sk-user"
        assert first["headers"]["X-Title"] == "Openera Agentic"
        assert first["payload"]["stream"] is True
        assert first["payload"]["messages"][0] == {"role": "system", "content": "You are helpful."}
        assert first["payload"]["tools"][0]["function"]["name"] == "read_file"

        second = received[1]["payload"]["messages"]
        assert second[-2]["tool_calls"][0]["id"] == "call_1"
        assert second[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "files:read_file ok"}

        result = finished[0]
        assert result.text == "Let me look. It contains one file."
        assert [c.name for c in result.tool_calls] == ["read_file"]
        assert result.finish_reason == "stop"
        assert result.usage == {"prompt_tokens": 30, "completion_tokens": 9}
        assert events[-1].usage == {"prompt_tokens": 30, "completion_tokens": 9}

    @pytest.mark.asyncio
    async def test_no_tools_key_when_catalog_is_absent(self):
        received = []
        async with TestServer(make_completions_app(received, [ANSWER_STEP])) as server:
            provider = OpenRouterProvider(api_key="k", api_base=str(server.make_url("/api/v1")))
            events = [
                event
                async for event in provider.stream([{"role": "user", "content": "hi"}], "m")
            ]

        assert "tools" not in received[0]["payload"]
        assert "".join(e.text for e in events if e.type == "text-delta") == "It contains one file."

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self):
        received = []
        async with TestServer(make_completions_app(received, status=401)) as server:
            provider = OpenRouterProvider(api_key="bad", api_base=str(server.make_url("/api/v1")))
            with pytest.raises(ModelInvocationFailed) as exc_info:
                async for _ in provider.stream([{"role": "user", "content": "hi"}], "m"):
                    pass

        assert exc_info.value.status == 401
        assert "No auth credentials found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = OpenRouterProvider(api_key=None, api_base="http://127.0.0.1:1/api/v1")

        with pytest.raises(ModelInvocationFailed):
            async for _ in provider.stream([{"role": "user", "content": "hi"}], "m"):
                pass


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_returns_message_content(self):
        received = []
        async with TestServer(make_completions_app(received)) as server:
            provider = OpenRouterProvider(api_key="k", api_base=str(server.make_url("/api/v1")))
            text = await provider.generate(
                "make this better", "openai/gpt-4.1-nano", system="enhance", temperature=0.7, max_tokens=500
            )

        assert text == "Better prompt"
        payload = received[0]["payload"]
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 500
        assert payload["messages"] == [
            {"role": "system", "content": "enhance"},
            {"role": "user", "content": "make this better"},
        ]
