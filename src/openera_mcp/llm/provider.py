"""
Model providers for the Openera MCP service.

A provider streams one assistant turn. When the model asks for tools, the
provider runs them against the turn's ToolCatalog and feeds the results back,
for at most ``max_steps`` completion steps.
"""

import json
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

import aiohttp

from openera_mcp.config import OpenRouterSettings
from openera_mcp.errors import ModelInvocationFailed
from openera_mcp.mcp.aggregator import ToolCatalog, format_tool_result
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

Message = Dict[str, Any]

# Completion API finish reasons mapped to the names the chat UI expects.
_FINISH_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def normalize_finish_reason(reason: Optional[str]) -> str:
    if not reason:
        return "stop"
    return _FINISH_REASONS.get(reason, "other")


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or "{}"},
        }


@dataclass
class StreamEvent:
    """
    One event of a streamed turn.

    ``type`` is one of text-delta, tool-call, tool-result, finish or error.
    """

    type: str
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    result: Any = None
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    error: Optional[str] = None


@dataclass
class FinishResult:
    """Summary of a completed turn, handed to ``on_finish``."""

    text: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Dict[str, int] = field(default_factory=dict)


OnFinish = Callable[[FinishResult], Awaitable[None]]


@dataclass
class CompletionStep:
    """Accumulates one streamed completion: its text, tool calls and finish reason."""

    text: str = ""
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    _partial_calls: Dict[int, Dict[str, str]] = field(default_factory=dict)

    def add_text(self, delta: str) -> None:
        self.text += delta

    def add_tool_call_delta(self, delta: Dict[str, Any]) -> None:
        """Merge a streamed tool-call fragment; arguments arrive in pieces."""
        index = delta.get("index", len(self._partial_calls))
        partial = self._partial_calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if delta.get("id"):
            partial["id"] = delta["id"]
        function = delta.get("function") or {}
        if function.get("name"):
            partial["name"] += function["name"]
        if function.get("arguments"):
            partial["arguments"] += function["arguments"]

    def add_usage(self, usage: Optional[Dict[str, Any]]) -> None:
        for key in ("prompt_tokens", "completion_tokens"):
            if usage and isinstance(usage.get(key), int):
                self.usage[key] = self.usage.get(key, 0) + usage[key]

    @property
    def tool_calls(self) -> List[ToolCall]:
        calls = []
        for index in sorted(self._partial_calls):
            partial = self._partial_calls[index]
            if not partial["name"]:
                continue
            try:
                arguments = json.loads(partial["arguments"]) if partial["arguments"] else {}
            except json.JSONDecodeError:
                logger.warning(f"Could not parse arguments for tool call {partial['name']}")
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {"value": arguments}
            calls.append(
                ToolCall(
                    id=partial["id"] or f"call_{index}",
                    name=partial["name"],
                    arguments=arguments,
                    raw_arguments=partial["arguments"],
                )
            )
        return calls

    def assistant_message(self) -> Message:
        message: Message = {"role": "assistant", "content": self.text or None}
        calls = self.tool_calls
        if calls:
            message["tool_calls"] = [call.to_message() for call in calls]
        return message


class ModelProvider:
    """Base class for model providers."""

    def __init__(self, max_steps: int = 5):
        self.max_steps = max(1, max_steps)

    async def _stream_step(
        self,
        messages: List[Message],
        model: str,
        tools: Optional[List[Dict[str, Any]]],
        api_key: Optional[str],
        step: CompletionStep,
    ) -> AsyncIterator[str]:
        """
        Stream one completion, yielding text deltas and filling ``step``.

        Raises:
            ModelInvocationFailed: If the model endpoint fails.
        """
        raise NotImplementedError("Subclasses must implement _stream_step()")
        yield ""

    async def generate(
        self,
        prompt: str,
        model: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """
        Generate a single non-streamed response.

        Raises:
            ModelInvocationFailed: If the model endpoint fails.
        """
        raise NotImplementedError("Subclasses must implement generate()")

    async def stream(
        self,
        messages: List[Message],
        model: str,
        system: Optional[str] = None,
        tools: Optional[ToolCatalog] = None,
        api_key: Optional[str] = None,
        on_finish: Optional[OnFinish] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a turn, executing requested tools between completion steps.

        Args:
            messages: Conversation messages; content may be a list of parts.
            model: Model identifier.
            system: System instructions, sent as the first message.
            tools: Catalog offered to the model. None sends no tools at all.
            api_key: Overrides the provider's configured key for this turn.
            on_finish: Awaited with the FinishResult once the turn completes.

        Raises:
            ModelInvocationFailed: If any completion step fails.
        """
        conversation: List[Message] = []
        if system:
            conversation.append({"role": "system", "content": system})
        conversation.extend(messages)

        definitions = tools.to_function_definitions() if tools else None
        text = ""
        executed: List[ToolCall] = []
        usage: Dict[str, int] = {}
        finish_reason = "stop"

        for step_number in range(1, self.max_steps + 1):
            step = CompletionStep()
            async for delta in self._stream_step(conversation, model, definitions, api_key, step):
                step.add_text(delta)
                yield StreamEvent(type="text-delta", text=delta)

            text += step.text
            for key, value in step.usage.items():
                usage[key] = usage.get(key, 0) + value
            finish_reason = normalize_finish_reason(step.finish_reason)

            calls = step.tool_calls
            if not calls or not tools:
                break

            logger.info(
                f"Step {step_number}: model requested {len(calls)} tool call(s)",
                data=[call.name for call in calls],
            )
            conversation.append(step.assistant_message())
            for call in calls:
                executed.append(call)
                yield StreamEvent(
                    type="tool-call",
                    tool_call_id=call.id,
                    tool_name=call.name,
                    args=call.arguments,
                )
                result_text = await self._execute_tool(call, tools)
                yield StreamEvent(
                    type="tool-result",
                    tool_call_id=call.id,
                    tool_name=call.name,
                    args=call.arguments,
                    result=result_text,
                )
                conversation.append(
                    {"role": "tool", "tool_call_id": call.id, "content": result_text}
                )
            if step_number == self.max_steps:
                logger.warning(f"Stopping after {self.max_steps} steps with tool calls pending")

        if on_finish is not None:
            await on_finish(
                FinishResult(
                    text=text, tool_calls=executed, finish_reason=finish_reason, usage=usage
                )
            )

        yield StreamEvent(type="finish", finish_reason=finish_reason, usage=usage)

    async def _execute_tool(self, call: ToolCall, tools: ToolCatalog) -> str:
        entry = tools.get(call.name)
        if entry is None:
            logger.error(f"Model requested unknown tool: {call.name}")
            return f"Error: Tool '{call.name}' not found"

        logger.info(f"Calling tool: {call.name} on {entry.server_name}", data=call.arguments)
        try:
            result = await entry.invoke(call.arguments)
        except Exception as e:
            logger.error(f"Error calling tool {call.name}: {e}")
            return f"Error: Tool call failed: {e}"

        text = format_tool_result(result)
        if result.isError:
            logger.error(f"Tool {call.name} returned an error: {text}")
            return f"Error: {text or 'Unknown error'}"
        return text


async def _iter_sse_data(content: aiohttp.StreamReader) -> AsyncIterator[str]:
    """Yield the ``data:`` payloads of a server-sent event stream."""
    async for raw_line in content:
        line = raw_line.decode("utf-8").strip()
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            yield line[len("data:"):].strip()


class OpenRouterProvider(ModelProvider):
    """OpenRouter provider, using its OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_steps: int = 5,
        app_url: Optional[str] = None,
        app_title: Optional[str] = None,
    ):
        """
        Initialize OpenRouter provider.

        Args:
            api_key: Default API key, used when a turn does not bring its own.
            api_base: Optional API base URL.
            temperature: Sampling temperature for streamed turns.
            max_tokens: Maximum tokens per completion step.
            max_steps: Maximum completion steps per turn.
            app_url: Sent as HTTP-Referer for OpenRouter app attribution.
            app_title: Sent as X-Title for OpenRouter app attribution.
        """
        super().__init__(max_steps=max_steps)
        self.api_key = api_key
        self.api_base = (api_base or "https://openrouter.ai/api/v1").rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.app_url = app_url
        self.app_title = app_title

    def _headers(self, api_key: Optional[str]) -> Dict[str, str]:
        key = api_key or self.api_key
        if not key:
            raise ModelInvocationFailed("OpenRouter API key is not configured", status=401)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {key}",
        }
        if self.app_url:
            headers["HTTP-Referer"] = self.app_url
        if self.app_title:
            headers["X-Title"] = self.app_title
        return headers

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        if response.status != 200:
            error_text = await response.text()
            raise ModelInvocationFailed(
                f"OpenRouter API error: {response.status} - {error_text}",
                status=response.status,
            )

    async def _stream_step(
        self,
        messages: List[Message],
        model: str,
        tools: Optional[List[Dict[str, Any]]],
        api_key: Optional[str],
        step: CompletionStep,
    ) -> AsyncIterator[str]:
        headers = self._headers(api_key)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_base}/chat/completions",
                    headers=headers,
                    json=payload,
                ) as response:
                    await self._raise_for_status(response)
                    async for data in _iter_sse_data(response.content):
                        if data == "[DONE]":
                            break
                        chunk = json.loads(data)
                        if chunk.get("error"):
                            error = chunk["error"]
                            raise ModelInvocationFailed(
                                f"OpenRouter stream error: {error.get('message', error)}",
                                status=error.get("code") if isinstance(error.get("code"), int) else None,
                            )
                        step.add_usage(chunk.get("usage"))
                        for choice in chunk.get("choices") or []:
                            delta = choice.get("delta") or {}
                            if delta.get("content"):
                                yield delta["content"]
                            for tool_delta in delta.get("tool_calls") or []:
                                step.add_tool_call_delta(tool_delta)
                            if choice.get("finish_reason"):
                                step.finish_reason = choice["finish_reason"]
        except aiohttp.ClientError as e:
            raise ModelInvocationFailed(f"OpenRouter request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ModelInvocationFailed(f"Malformed OpenRouter stream chunk: {e}") from e

    async def generate(
        self,
        prompt: str,
        model: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
    ) -> str:
        headers = self._headers(api_key)
        messages: List[Message] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_base}/chat/completions",
                    headers=headers,
                    json=payload,
                ) as response:
                    await self._raise_for_status(response)
                    result = await response.json()
        except aiohttp.ClientError as e:
            raise ModelInvocationFailed(f"OpenRouter request failed: {e}") from e

        choices = result.get("choices") or []
        if choices and "message" in choices[0]:
            return choices[0]["message"].get("content") or ""

        raise ModelInvocationFailed(f"Unexpected OpenRouter API response format: {result}")


def message_text(message: Message) -> str:
    """Text of a message whose content is a string or a list of parts."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


class MockProvider(ModelProvider):
    """
    Deterministic offline provider for development and tests.

    If the latest user message names a tool from the catalog, the first step
    calls it with no arguments. Otherwise the user's text is echoed back.
    """

    async def _stream_step(
        self,
        messages: List[Message],
        model: str,
        tools: Optional[List[Dict[str, Any]]],
        api_key: Optional[str],
        step: CompletionStep,
    ) -> AsyncIterator[str]:
        last = messages[-1] if messages else {}

        if last.get("role") == "tool":
            results = [m.get("content", "") for m in messages if m.get("role") == "tool"]
            reply = "Tool results: " + " | ".join(results)
        else:
            user_text = next(
                (message_text(m) for m in reversed(messages) if m.get("role") == "user"),
                "",
            )
            called = self._pick_tool(user_text, tools)
            if called is not None:
                step.add_tool_call_delta(
                    {"index": 0, "id": "call_mock_0", "function": {"name": called, "arguments": "{}"}}
                )
                step.finish_reason = "tool_calls"
                return
            reply = f"You said: {user_text}" if user_text else "I'm not sure what you're asking about."

        step.finish_reason = "stop"
        for index, word in enumerate(reply.split(" ")):
            yield word if index == 0 else f" {word}"

    @staticmethod
    def _pick_tool(text: str, tools: Optional[List[Dict[str, Any]]]) -> Optional[str]:
        for definition in tools or []:
            name = definition["function"]["name"]
            if name in text:
                return name
        return None

    async def generate(
        self,
        prompt: str,
        model: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
    ) -> str:
        return f"Enhanced: {prompt.strip()}"


def create_provider(settings: OpenRouterSettings) -> ModelProvider:
    """
    Create a model provider from configuration.

    Raises:
        ValueError: If the provider is not supported.
    """
    provider = settings.provider.lower()

    if provider == "openrouter":
        return OpenRouterProvider(
            api_key=settings.api_key,
            api_base=settings.api_base,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            max_steps=settings.max_steps,
            app_url=settings.app_url,
            app_title=settings.app_title,
        )
    elif provider == "mock":
        return MockProvider(max_steps=settings.max_steps)
    else:
        raise ValueError(f"Unsupported model provider: {provider}")
