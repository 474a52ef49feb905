"""
Conversation history and document retrieval for agent turns.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openera_mcp.config import ContextSettings, StoreSettings
from openera_mcp.context.store import ContextStore, ConversationEntry, Document, utc_now
from openera_mcp.errors import RetrievalFailed
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

SEARCH_FIELDS = ("title", "content")


@dataclass
class ContextBundle:
    """What one turn knows about its session before the model runs."""

    session_id: Optional[str]
    agent_id: Optional[str] = None
    recent_conversations: List[ConversationEntry] = field(default_factory=list)
    relevant_documents: List[Document] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    @property
    def empty(self) -> bool:
        return not self.recent_conversations and not self.relevant_documents


class ContextRetriever:
    """
    Reads and writes conversation history and documents through a ContextStore.

    Writes never raise: a store failure is logged and the write returns None.
    Reads used while building a turn's context degrade to empty results.
    """

    def __init__(
        self,
        store: ContextStore,
        settings: Optional[ContextSettings] = None,
        conversations_table: str = "conversations",
        documents_table: str = "documents",
    ):
        self.store = store
        self.settings = settings or ContextSettings()
        self.conversations_table = conversations_table
        self.documents_table = documents_table

    @classmethod
    def from_settings(
        cls, store: ContextStore, context: ContextSettings, store_settings: StoreSettings
    ) -> "ContextRetriever":
        return cls(
            store,
            context,
            conversations_table=store_settings.conversations_table,
            documents_table=store_settings.documents_table,
        )

    async def store_conversation(self, entry: ConversationEntry) -> Optional[ConversationEntry]:
        try:
            record = entry.model_dump(exclude_none=True)
            stored = await self.store.insert(self.conversations_table, record)
            return ConversationEntry.model_validate(stored)
        except Exception as e:
            logger.error(f"Error storing conversation: {e}")
            return None

    async def store_user_message(
        self,
        session_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ) -> Optional[ConversationEntry]:
        return await self.store_conversation(
            ConversationEntry(
                session_id=session_id,
                agent_id=agent_id,
                role="user",
                content=content,
                metadata={**(metadata or {}), "message_type": "user_input"},
            )
        )

    async def store_agent_response(
        self,
        session_id: str,
        agent_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConversationEntry]:
        return await self.store_conversation(
            ConversationEntry(
                session_id=session_id,
                agent_id=agent_id,
                role="assistant",
                content=content,
                metadata={**(metadata or {}), "agent_type": "sub_agent"},
            )
        )

    async def fetch_recent_context(
        self,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ConversationEntry]:
        """
        Newest-first conversation entries, optionally filtered.

        Raises:
            RetrievalFailed: If the store lookup fails.
        """
        filters: Dict[str, Any] = {}
        if session_id:
            filters["session_id"] = session_id
        if agent_id:
            filters["agent_id"] = agent_id
        try:
            rows = await self.store.query(
                self.conversations_table, filters=filters, limit=limit
            )
            return [ConversationEntry.model_validate(row) for row in rows]
        except Exception as e:
            raise RetrievalFailed(f"Error getting recent context: {e}") from e

    async def fetch_relevant_documents(
        self, query: Optional[str] = None, limit: int = 10
    ) -> List[Document]:
        """
        Documents whose title or content contains ``query``, newest first.
        Without a query the most recent documents are returned.

        Raises:
            RetrievalFailed: If the store lookup fails.
        """
        try:
            if query:
                rows = await self.store.substring_search(
                    self.documents_table, query, SEARCH_FIELDS, limit=limit
                )
            else:
                rows = await self.store.query(self.documents_table, limit=limit)
            return [Document.model_validate(row) for row in rows]
        except Exception as e:
            raise RetrievalFailed(f"Error getting relevant documents: {e}") from e

    async def get_recent_context(
        self,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ConversationEntry]:
        try:
            return await self.fetch_recent_context(session_id, agent_id, limit)
        except RetrievalFailed as e:
            logger.error(str(e))
            return []

    async def get_relevant_documents(
        self, query: Optional[str] = None, limit: int = 10
    ) -> List[Document]:
        try:
            return await self.fetch_relevant_documents(query, limit)
        except RetrievalFailed as e:
            logger.error(str(e))
            return []

    async def build_context(
        self,
        session_id: str,
        agent_id: Optional[str] = None,
        user_query: Optional[str] = None,
    ) -> ContextBundle:
        """
        Gather recent conversations and relevant documents concurrently.

        Each half fails independently; a failed half comes back empty.
        """
        conversations, documents = await asyncio.gather(
            self.get_recent_context(session_id, agent_id, self.settings.history_limit),
            self.get_relevant_documents(user_query, self.settings.document_limit),
        )
        return ContextBundle(
            session_id=session_id,
            agent_id=agent_id,
            recent_conversations=conversations,
            relevant_documents=documents,
        )

    async def add_document(
        self, title: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Document:
        """
        Add a document to the retrieval corpus.

        Raises:
            StoreError: If the store rejects the insert.
        """
        document = Document(title=title, content=content, metadata=metadata or {})
        stored = await self.store.insert(
            self.documents_table, document.model_dump(exclude_none=True)
        )
        logger.info(f"Added document '{title}'")
        return Document.model_validate(stored)

    async def list_documents(self, limit: Optional[int] = None) -> List[Document]:
        rows = await self.store.query(self.documents_table, limit=limit)
        return [Document.model_validate(row) for row in rows]

    async def delete_document(self, document_id: str) -> bool:
        deleted = await self.store.delete(self.documents_table, document_id)
        if deleted:
            logger.info(f"Deleted document {document_id}")
        return deleted
