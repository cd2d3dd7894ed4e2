"""
Abstract storage interface.

The engine only needs the operations below; any relational or document
store can implement them.  Every method is synchronous and must complete
without yielding to the event loop, which is what makes a single call (in
particular commit_ingestion) atomic with respect to concurrent requests.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from secondbrain.chunking.schemas import TextChunk
from secondbrain.schemas import (
    Citation,
    Conversation,
    Document,
    Embedding,
    Fragment,
    GenerationState,
    IntegrityReport,
    Message,
    MessageRole,
)


class DocumentStore(ABC):
    """Documents, fragments, embeddings, conversations and messages."""

    @property
    @abstractmethod
    def version(self) -> int:
        """Monotonic counter bumped whenever the set of fragments changes."""
        ...

    # --- Documents ------------------------------------------------------------

    @abstractmethod
    def add_document(self, filename: str, size_bytes: int, storage_ref: str) -> Document: ...

    @abstractmethod
    def get_document(self, document_id: int) -> Optional[Document]: ...

    @abstractmethod
    def list_documents(self) -> list[Document]:
        """Most recent first."""
        ...

    @abstractmethod
    def delete_document(self, document_id: int) -> bool:
        """Delete a document with its fragments and embeddings. False if missing."""
        ...

    # --- Fragments & embeddings ------------------------------------------------

    @abstractmethod
    def is_ingested(self, document_id: int) -> bool: ...

    @abstractmethod
    def commit_ingestion(
        self,
        document_id: int,
        chunks: list[TextChunk],
        vectors: list[list[float]],
        model: str,
    ) -> list[Fragment]:
        """
        Persist all fragments and their embeddings in one step.

        Either every fragment is stored with its embedding or nothing is.

        Raises:
            NotFoundError: document does not exist.
            ConflictError: document already has fragments.
            InternalError: chunks / vectors length mismatch.
        """
        ...

    @abstractmethod
    def count_fragments(self, document_id: Optional[int] = None) -> int: ...

    @abstractmethod
    def all_fragments(self) -> list[Fragment]: ...

    @abstractmethod
    def get_fragments(self, fragment_ids: list[int]) -> list[Fragment]:
        """Fragments in the order requested; unknown ids are skipped."""
        ...

    @abstractmethod
    def get_embeddings(self, fragment_ids: list[int]) -> dict[int, Embedding]: ...

    @abstractmethod
    def recent_embeddings(self, limit: int) -> list[Embedding]:
        """The `limit` most recently created embeddings, newest first."""
        ...

    # --- Conversations -------------------------------------------------------

    @abstractmethod
    def create_conversation(self, title: str) -> Conversation: ...

    @abstractmethod
    def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    @abstractmethod
    def list_conversations(self) -> list[Conversation]:
        """Most recently updated first."""
        ...

    @abstractmethod
    def add_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        state: Optional[GenerationState] = None,
        sources: Optional[list[Citation]] = None,
    ) -> Message: ...

    @abstractmethod
    def list_messages(self, conversation_id: int) -> list[Message]:
        """Oldest first."""
        ...

    @abstractmethod
    def delete_conversation(self, conversation_id: int) -> bool: ...

    # --- Diagnostics ------------------------------------------------------------

    @abstractmethod
    def integrity_report(self) -> IntegrityReport: ...
