"""
Local Store
------------
In-process implementation of DocumentStore.

Records live in insertion-ordered dicts; when a data directory is given the
store is snapshotted to disk after every mutation so the CLI and the API
server share state across runs.  The corpus and the conversations are kept
in separate files so answering a question never rewrites the embeddings:

  - Documents, fragments, embeddings -> {data_dir}/store.json
  - Conversations and messages       -> {data_dir}/conversations.json
  - Integrity summary                -> {data_dir}/manifest.json

Both snapshot files are written to a temp file, then renamed.

Suitable for a personal collection (thousands of fragments).  Larger corpora
should implement DocumentStore on a real database.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger

from secondbrain.chunking.schemas import TextChunk
from secondbrain.errors import ConflictError, InternalError, NotFoundError
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
    utcnow,
)
from secondbrain.storage.base import DocumentStore
from secondbrain.utils.helpers import read_json, write_json

STORE_FILE = "store.json"
MANIFEST_FILE = "manifest.json"
CONVERSATIONS_FILE = "conversations.json"

CORPUS = "corpus"
CONVERSATIONS = "conversations"


class LocalStore(DocumentStore):
    """
    Dict-backed store with optional JSON snapshots.

    Usage:
        store = LocalStore()                       # memory only
        store = LocalStore.load("data/store")      # restore + keep snapshotting
    """

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self._documents: dict[int, Document] = {}
        self._fragments: dict[int, Fragment] = {}
        self._embeddings: dict[int, Embedding] = {}      # keyed by fragment_id
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, Message] = {}
        self._counters = {"document": 0, "fragment": 0, "conversation": 0, "message": 0}
        self._version = 0

    def _next_id(self, kind: str) -> int:
        self._counters[kind] += 1
        return self._counters[kind]

    @property
    def version(self) -> int:
        return self._version

    # --- Documents ------------------------------------------------------------

    def add_document(self, filename: str, size_bytes: int, storage_ref: str) -> Document:
        doc = Document(
            id=self._next_id("document"),
            filename=filename,
            size_bytes=size_bytes,
            storage_ref=storage_ref,
        )
        self._documents[doc.id] = doc
        logger.info(f"[Store] Document {doc.id} registered: {filename} ({size_bytes} bytes)")
        self._persist(CORPUS)
        return doc

    def get_document(self, document_id: int) -> Optional[Document]:
        return self._documents.get(document_id)

    def list_documents(self) -> list[Document]:
        return sorted(self._documents.values(), key=lambda d: (d.created_at, d.id), reverse=True)

    def delete_document(self, document_id: int) -> bool:
        if document_id not in self._documents:
            return False
        fragment_ids = [f.id for f in self._fragments.values() if f.document_id == document_id]
        for fid in fragment_ids:
            self._embeddings.pop(fid, None)
            del self._fragments[fid]
        del self._documents[document_id]
        if fragment_ids:
            self._version += 1
        logger.info(
            f"[Store] Document {document_id} deleted with {len(fragment_ids)} fragment(s)"
        )
        self._persist(CORPUS)
        return True

    # --- Fragments & embeddings ------------------------------------------------

    def is_ingested(self, document_id: int) -> bool:
        return any(f.document_id == document_id for f in self._fragments.values())

    def commit_ingestion(
        self,
        document_id: int,
        chunks: list[TextChunk],
        vectors: list[list[float]],
        model: str,
    ) -> list[Fragment]:
        if document_id not in self._documents:
            raise NotFoundError(f"Document {document_id} not found")
        if self.is_ingested(document_id):
            raise ConflictError(f"Document {document_id} is already ingested")
        if len(chunks) != len(vectors):
            raise InternalError(
                f"Mismatch: {len(chunks)} chunks vs {len(vectors)} embeddings"
            )

        # Build every record first; nothing is visible until the final update.
        now = utcnow()
        fragments: list[Fragment] = []
        embeddings: list[Embedding] = []
        next_id = self._counters["fragment"]
        for chunk, vector in zip(chunks, vectors):
            next_id += 1
            fragments.append(
                Fragment(
                    id=next_id,
                    document_id=document_id,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    size=chunk.size,
                    created_at=now,
                )
            )
            embeddings.append(
                Embedding(fragment_id=next_id, vector=list(vector), model=model, created_at=now)
            )

        self._fragments.update({f.id: f for f in fragments})
        self._embeddings.update({e.fragment_id: e for e in embeddings})
        self._counters["fragment"] = next_id
        if fragments:
            self._version += 1
        self._persist(CORPUS)
        return fragments

    def count_fragments(self, document_id: Optional[int] = None) -> int:
        if document_id is None:
            return len(self._fragments)
        return sum(1 for f in self._fragments.values() if f.document_id == document_id)

    def all_fragments(self) -> list[Fragment]:
        return list(self._fragments.values())

    def get_fragments(self, fragment_ids: list[int]) -> list[Fragment]:
        return [self._fragments[fid] for fid in fragment_ids if fid in self._fragments]

    def get_embeddings(self, fragment_ids: list[int]) -> dict[int, Embedding]:
        return {fid: self._embeddings[fid] for fid in fragment_ids if fid in self._embeddings}

    def recent_embeddings(self, limit: int) -> list[Embedding]:
        # Insertion order is creation order; walk it backwards.
        newest_first = reversed(list(self._embeddings.values()))
        return [emb for _, emb in zip(range(limit), newest_first)]

    # --- Conversations -------------------------------------------------------

    def create_conversation(self, title: str) -> Conversation:
        conv = Conversation(id=self._next_id("conversation"), title=title)
        self._conversations[conv.id] = conv
        self._persist(CONVERSATIONS)
        return conv

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def list_conversations(self) -> list[Conversation]:
        return sorted(self._conversations.values(), key=lambda c: (c.updated_at, c.id), reverse=True)

    def add_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        state: Optional[GenerationState] = None,
        sources: Optional[list[Citation]] = None,
    ) -> Message:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        msg = Message(
            id=self._next_id("message"),
            conversation_id=conversation_id,
            role=role,
            content=content,
            state=state,
            sources=list(sources or []),
        )
        self._messages[msg.id] = msg
        conv.updated_at = msg.created_at
        self._persist(CONVERSATIONS)
        return msg

    def list_messages(self, conversation_id: int) -> list[Message]:
        return [m for m in self._messages.values() if m.conversation_id == conversation_id]

    def delete_conversation(self, conversation_id: int) -> bool:
        if self._conversations.pop(conversation_id, None) is None:
            return False
        for mid in [m.id for m in self._messages.values() if m.conversation_id == conversation_id]:
            del self._messages[mid]
        logger.info(f"[Store] Conversation {conversation_id} deleted")
        self._persist(CONVERSATIONS)
        return True

    # --- Diagnostics ------------------------------------------------------------

    def integrity_report(self) -> IntegrityReport:
        fragment_ids = set(self._fragments)
        embedding_ids = set(self._embeddings)
        return IntegrityReport(
            documents=len(self._documents),
            ingested_documents=len({f.document_id for f in self._fragments.values()}),
            fragments=len(fragment_ids),
            embeddings=len(embedding_ids),
            fragments_without_embedding=len(fragment_ids - embedding_ids),
            embeddings_without_fragment=len(embedding_ids - fragment_ids),
            dimensions=sorted({len(e.vector) for e in self._embeddings.values()}),
            models=sorted({e.model for e in self._embeddings.values()}),
        )

    # --- Persistence ----------------------------------------------------------

    def _persist(self, part: str) -> None:
        if self.data_dir is None:
            return
        if part == CORPUS:
            self._save_corpus(self.data_dir)
        else:
            self._save_conversations(self.data_dir)

    def _save_corpus(self, data_dir: Path) -> None:
        snapshot = {
            "counters": {k: self._counters[k] for k in ("document", "fragment")},
            "version": self._version,
            "documents": [d.model_dump(mode="json") for d in self._documents.values()],
            "fragments": [f.model_dump(mode="json") for f in self._fragments.values()],
            "embeddings": [e.model_dump(mode="json") for e in self._embeddings.values()],
        }
        write_json(snapshot, data_dir / STORE_FILE, atomic=True)
        write_json(self.integrity_report().model_dump(mode="json"), data_dir / MANIFEST_FILE)
        logger.debug(
            f"[Store] Corpus saved -> {data_dir}/{STORE_FILE} ({len(self._fragments)} fragments)"
        )

    def _save_conversations(self, data_dir: Path) -> None:
        snapshot = {
            "counters": {k: self._counters[k] for k in ("conversation", "message")},
            "conversations": [c.model_dump(mode="json") for c in self._conversations.values()],
            "messages": [m.model_dump(mode="json") for m in self._messages.values()],
        }
        write_json(snapshot, data_dir / CONVERSATIONS_FILE, atomic=True)
        logger.debug(f"[Store] Conversations saved -> {data_dir}/{CONVERSATIONS_FILE}")

    def save(self, data_dir: str | Path) -> None:
        """Snapshot the corpus, the manifest and the conversations to data_dir."""
        data_dir = Path(data_dir)
        self._save_corpus(data_dir)
        self._save_conversations(data_dir)

    @classmethod
    def load(cls, data_dir: str | Path) -> "LocalStore":
        """Restore a snapshot; missing files yield empty collections."""
        instance = cls(data_dir)
        corpus_path = Path(data_dir) / STORE_FILE
        conversations_path = Path(data_dir) / CONVERSATIONS_FILE

        if corpus_path.exists():
            raw = read_json(corpus_path)
            instance._counters.update(raw.get("counters", {}))
            instance._version = raw.get("version", 0)
            instance._documents = {d["id"]: Document(**d) for d in raw.get("documents", [])}
            instance._fragments = {f["id"]: Fragment(**f) for f in raw.get("fragments", [])}
            instance._embeddings = {
                e["fragment_id"]: Embedding(**e) for e in raw.get("embeddings", [])
            }
        else:
            logger.info(f"[Store] No snapshot at {corpus_path}; starting empty")

        if conversations_path.exists():
            raw = read_json(conversations_path)
            instance._counters.update(raw.get("counters", {}))
            instance._conversations = {
                c["id"]: Conversation(**c) for c in raw.get("conversations", [])
            }
            instance._messages = {m["id"]: Message(**m) for m in raw.get("messages", [])}

        logger.info(
            f"[Store] Loaded: {len(instance._documents)} documents, "
            f"{len(instance._fragments)} fragments, {len(instance._embeddings)} embeddings, "
            f"{len(instance._conversations)} conversations"
        )
        return instance
