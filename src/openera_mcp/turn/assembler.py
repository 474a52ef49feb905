"""
Assembles everything one agent turn needs and runs it against the model.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from openera_mcp.config import ContextSettings, MCPServerSettings
from openera_mcp.context.retriever import ContextBundle, ContextRetriever
from openera_mcp.context.store import ConversationEntry
from openera_mcp.errors import ModelInvocationFailed
from openera_mcp.llm.provider import FinishResult, ModelProvider, StreamEvent, message_text
from openera_mcp.mcp.aggregator import ServerStatusReport, ToolAggregator, ToolCatalog
from openera_mcp.turn.instructions import build_system_prompt
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class ChatMessage(BaseModel):
    """A message as sent by the chat UI. Extra UI fields (id, createdAt) are dropped."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant", "system", "tool"]
    content: Union[str, List[Dict[str, Any]]] = ""

    @property
    def text(self) -> str:
        return message_text({"content": self.content})

    def to_model_message(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


class TurnRequest(BaseModel):
    """Body of a chat request. Field aliases match the UI's JSON."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: List[ChatMessage] = Field(min_length=1)
    mcp_servers: List[MCPServerSettings] = Field(default_factory=list, alias="mcpServers")
    images: List[str] = Field(default_factory=list)
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model: Optional[str] = None
    selected_mcp_server: Optional[str] = Field(default=None, alias="selectedMCPServer")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    # None means the configured default agent ("main").
    agent_id: Optional[str] = Field(default=None, alias="agentId")

    @property
    def last_message(self) -> ChatMessage:
        return self.messages[-1]

    @property
    def latest_user_text(self) -> Optional[str]:
        last = self.last_message
        return last.text if last.role == "user" else None


@dataclass
class TurnPayload:
    """What the model boundary receives for one turn."""

    messages: List[Dict[str, Any]]
    tools: Optional[ToolCatalog]
    system: str
    model: str
    api_key: Optional[str] = None
    agent_id: Optional[str] = None
    statuses: List[ServerStatusReport] = field(default_factory=list)
    context: Optional[ContextBundle] = None


def attach_images(text: str, images: Sequence[str]) -> List[Dict[str, Any]]:
    """Turn a text message into content parts with one image part per image URL."""
    parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    parts.extend({"type": "image_url", "image_url": {"url": image}} for image in images)
    return parts


class TurnContextAssembler:
    """
    Builds the model payload for a turn and streams the model's answer.

    Persistence, context retrieval and tool aggregation are all best effort:
    a failure in any of them degrades the turn but never ends it. Only the
    model invocation itself may fail the turn.
    """

    def __init__(
        self,
        aggregator: ToolAggregator,
        retriever: ContextRetriever,
        provider: ModelProvider,
        default_model: str,
        default_servers: Optional[Sequence[MCPServerSettings]] = None,
        context_settings: Optional[ContextSettings] = None,
    ):
        self.aggregator = aggregator
        self.retriever = retriever
        self.provider = provider
        self.default_model = default_model
        self.default_servers = list(default_servers or [])
        self.context_settings = context_settings or ContextSettings()

    async def assemble_turn(self, request: TurnRequest) -> TurnPayload:
        logger.info(f"Starting chat request with {len(request.mcp_servers)} MCP servers")
        if request.selected_mcp_server:
            logger.info(f"User selected MCP server: {request.selected_mcp_server}")

        last = request.last_message
        user_text = request.latest_user_text
        agent_id = request.agent_id or self.context_settings.agent_id

        if request.session_id and last.role == "user":
            await self.retriever.store_user_message(
                request.session_id,
                user_text or "",
                {
                    "selectedMCPServer": request.selected_mcp_server,
                    "hasImages": bool(request.images),
                },
                agent_id=agent_id,
            )

        context: Optional[ContextBundle] = None
        if request.session_id:
            try:
                context = await self.retriever.build_context(
                    request.session_id, agent_id, user_text
                )
            except Exception as e:
                logger.error(f"Context retrieval failed, continuing without context: {e}")

        servers = request.mcp_servers or self.default_servers
        try:
            catalog, statuses = await self.aggregator.aggregate(servers)
        except Exception as e:
            logger.error(f"Tool aggregation failed, continuing without tools: {e}")
            catalog, statuses = ToolCatalog(), []

        messages = [message.to_model_message() for message in request.messages]
        if request.images and last.role == "user":
            messages[-1] = {"role": "user", "content": attach_images(user_text or "", request.images)}

        system = build_system_prompt(
            context,
            statuses,
            catalog,
            selected_server=request.selected_mcp_server,
            summary_turns=self.context_settings.summary_turns,
            excerpt_chars=self.context_settings.excerpt_chars,
        )

        return TurnPayload(
            messages=messages,
            tools=catalog if len(catalog) > 0 else None,
            system=system,
            model=request.model or self.default_model,
            api_key=request.api_key,
            agent_id=agent_id,
            statuses=statuses,
            context=context,
        )

    async def run_turn(self, request: TurnRequest) -> AsyncIterator[StreamEvent]:
        """
        Assemble the turn and stream the model's events.

        The assistant's reply is persisted once the model finishes.

        Raises:
            ModelInvocationFailed: If the model invocation fails.
        """
        payload = await self.assemble_turn(request)

        async def on_finish(result: FinishResult) -> None:
            if not request.session_id or not result.text:
                return
            await self.retriever.store_conversation(
                ConversationEntry(
                    session_id=request.session_id,
                    agent_id=payload.agent_id,
                    role="assistant",
                    content=result.text,
                    metadata={
                        "model": payload.model,
                        "toolsUsed": len(result.tool_calls),
                        "selectedMCPServer": request.selected_mcp_server,
                    },
                )
            )

        try:
            async for event in self.provider.stream(
                payload.messages,
                payload.model,
                system=payload.system,
                tools=payload.tools,
                api_key=payload.api_key,
                on_finish=on_finish,
            ):
                yield event
        except ModelInvocationFailed:
            raise
        except Exception as e:
            raise ModelInvocationFailed(f"Model invocation failed: {e}") from e
