"""
HTTP API for the Openera MCP service.

Chat responses are streamed in the data-stream format the chat UI consumes:
one ``<code>:<json>`` part per line.
"""

import json
from typing import Any, Dict, Optional

from aiohttp import web
from pydantic import ValidationError

from openera_mcp.app import OpeneraApp
from openera_mcp.errors import ModelInvocationFailed, StoreError
from openera_mcp.llm.provider import StreamEvent
from openera_mcp.turn.assembler import TurnRequest
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

OPENERA_APP = web.AppKey("openera_app", OpeneraApp)

DATA_STREAM_HEADER = "X-Vercel-AI-Data-Stream"


def _part(code: str, value: Any) -> bytes:
    return f"{code}:{json.dumps(value, separators=(',', ':'))}\n".encode("utf-8")


def _usage(event: StreamEvent) -> Dict[str, int]:
    usage = event.usage or {}
    return {
        "promptTokens": usage.get("prompt_tokens", 0),
        "completionTokens": usage.get("completion_tokens", 0),
    }


def encode_event(event: StreamEvent) -> bytes:
    """Encode one stream event as data-stream part(s)."""
    if event.type == "text-delta":
        return _part("0", event.text or "")
    if event.type == "tool-call":
        return _part(
            "9",
            {"toolCallId": event.tool_call_id, "toolName": event.tool_name, "args": event.args or {}},
        )
    if event.type == "tool-result":
        return _part("a", {"toolCallId": event.tool_call_id, "result": event.result})
    if event.type == "error":
        return _part("3", event.error or "An error occurred.")
    if event.type == "finish":
        finish = {"finishReason": event.finish_reason or "stop", "usage": _usage(event)}
        return _part("e", {**finish, "isContinued": False}) + _part("d", finish)
    raise ValueError(f"Unknown stream event type: {event.type}")


def _error_response(status: int, error: str, details: Optional[Any] = None) -> web.Response:
    body: Dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return web.json_response(body, status=status)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except json.JSONDecodeError as e:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "details": str(e)}),
            content_type="application/json",
        )


async def chat(request: web.Request) -> web.StreamResponse:
    body = await _read_json(request)
    try:
        turn = TurnRequest.model_validate(body)
    except ValidationError as e:
        return _error_response(400, "Invalid request", str(e))

    openera = request.app[OPENERA_APP]
    events = openera.assembler.run_turn(turn)

    # Nothing is sent until the first event, so early failures can still be a 500.
    try:
        first: Optional[StreamEvent] = await events.__anext__()
    except StopAsyncIteration:
        first = None
    except Exception as e:
        logger.error(f"Chat API error: {e}")
        await events.aclose()
        return _error_response(500, "Internal server error", str(e))

    response = web.StreamResponse(headers={DATA_STREAM_HEADER: "v1"})
    response.content_type = "text/plain"
    response.charset = "utf-8"
    await response.prepare(request)

    try:
        if first is not None:
            await response.write(encode_event(first))
        async for event in events:
            await response.write(encode_event(event))
    except ModelInvocationFailed as e:
        logger.error(f"Chat stream failed: {e}")
        await response.write(encode_event(StreamEvent(type="error", error=str(e))))
    finally:
        await events.aclose()

    await response.write_eof()
    return response


async def enhance_prompt(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if not isinstance(body, dict):
        return _error_response(400, "No input provided")

    user_input = body.get("userInput")
    if not isinstance(user_input, str) or not user_input.strip():
        return _error_response(400, "No input provided")

    system_prompt = body.get("enhancementPrompt") or body.get("systemPrompt")
    try:
        result = await request.app[OPENERA_APP].enhancer.enhance_prompt(user_input, system_prompt)
    except Exception as e:
        logger.error(f"Prompt enhancement error: {e}")
        return _error_response(500, "Failed to enhance prompt", str(e))

    return web.json_response(result.to_dict())


async def mcp_status(request: web.Request) -> web.Response:
    registry = request.app[OPENERA_APP].registry
    return web.json_response({"servers": [handle.snapshot() for handle in registry.handles()]})


async def list_documents(request: web.Request) -> web.Response:
    try:
        limit = int(request.query["limit"]) if "limit" in request.query else None
    except ValueError:
        return _error_response(400, "limit must be an integer")

    try:
        documents = await request.app[OPENERA_APP].retriever.list_documents(limit)
    except StoreError as e:
        return _error_response(500, "Failed to list documents", str(e))
    return web.json_response({"documents": [d.model_dump(mode="json") for d in documents]})


async def add_document(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if not isinstance(body, dict):
        return _error_response(400, "Title and content are required")

    title = body.get("title")
    content = body.get("content")
    if not isinstance(title, str) or not title.strip() or not isinstance(content, str) or not content.strip():
        return _error_response(400, "Title and content are required")

    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        return _error_response(400, "metadata must be an object")

    try:
        document = await request.app[OPENERA_APP].retriever.add_document(title, content, metadata)
    except StoreError as e:
        return _error_response(500, "Failed to add document", str(e))
    return web.json_response(document.model_dump(mode="json"), status=201)


async def delete_document(request: web.Request) -> web.Response:
    document_id = request.match_info["document_id"]
    try:
        deleted = await request.app[OPENERA_APP].retriever.delete_document(document_id)
    except StoreError as e:
        return _error_response(500, "Failed to delete document", str(e))
    if not deleted:
        return _error_response(404, f"Document {document_id} not found")
    return web.json_response({"deleted": document_id})


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(openera: Optional[OpeneraApp] = None) -> web.Application:
    """
    Build the aiohttp application.

    The OpeneraApp is initialized on startup and cleaned up on shutdown,
    which closes every tool-server session.
    """
    app = web.Application()
    app[OPENERA_APP] = openera or OpeneraApp()

    async def openera_lifecycle(app: web.Application):
        async with app[OPENERA_APP].run():
            yield

    app.cleanup_ctx.append(openera_lifecycle)

    app.router.add_post("/api/chat", chat)
    app.router.add_post("/api/enhance-prompt", enhance_prompt)
    app.router.add_get("/api/mcp/status", mcp_status)
    app.router.add_get("/api/documents", list_documents)
    app.router.add_post("/api/documents", add_document)
    app.router.add_delete("/api/documents/{document_id}", delete_document)
    app.router.add_get("/health", health)
    return app
