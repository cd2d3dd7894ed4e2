"""
Second Brain RAG - Web API Server
----------------------------------
FastAPI server that wraps RAGPipeline.

Endpoints:
  GET    /api/health                   -> status, store counts, models
  GET    /api/documents                -> registered documents
  DELETE /api/documents/{id}           -> delete document (cascades)
  POST   /api/ingest                   -> chunk + embed one document
  POST   /api/query                    -> answer a question (buffered)
  POST   /api/query/stream             -> answer a question (NDJSON stream)
  GET    /api/conversations/{id}       -> conversation with its messages
  DELETE /api/conversations/{id}       -> delete conversation

Run from the project root:
    uvicorn app.server:app --reload --port 8000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import orjson
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from secondbrain.errors import DependencyUnavailableError, RAGError
from secondbrain.generation.orchestrator import StreamEvent, StreamEventType
from secondbrain.schemas import Citation, Document, Message
from secondbrain.serving.pipeline import RAGPipeline
from secondbrain.utils.helpers import truncate_text


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: int = Field(alias="documentId", gt=0, strict=True)


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(strict=True)
    conversation_id: Optional[int] = Field(default=None, alias="conversationId", gt=0, strict=True)


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def _citation(c: Citation) -> dict:
    return {"documentId": c.document_id, "filename": c.filename, "chunkIndex": c.chunk_index}


def _document(doc: Document, chunks: int) -> dict:
    return {
        "id": doc.id,
        "filename": doc.filename,
        "sizeBytes": doc.size_bytes,
        "createdAt": doc.created_at.isoformat(),
        "ingested": chunks > 0,
        "chunks": chunks,
    }


def _message(msg: Message) -> dict:
    return {
        "id": msg.id,
        "role": msg.role.value,
        "content": msg.content,
        "state": msg.state.value if msg.state else None,
        "sources": [_citation(s) for s in msg.sources],
        "createdAt": msg.created_at.isoformat(),
    }


def _ndjson(event: StreamEvent) -> bytes:
    return orjson.dumps(event.to_dict()) + b"\n"


def _error_response(exc: RAGError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(pipeline: Optional[RAGPipeline] = None) -> FastAPI:
    """
    Build the API.

    When no pipeline is given one is built from config at startup and closed
    at shutdown; a pipeline passed in is owned by the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.pipeline is None
        if owned:
            from secondbrain.config import load_config
            from secondbrain.utils.logger import setup_logger

            config = load_config()
            setup_logger(config.log_level, config.log_file)
            logger.info("[Server] Loading RAG pipeline...")
            app.state.pipeline = RAGPipeline(config)
        yield
        if owned:
            await app.state.pipeline.aclose()
            app.state.pipeline = None
            logger.info("[Server] Pipeline unloaded.")

    app = FastAPI(
        title="Second Brain RAG API",
        description="Question answering over your own documents",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error handlers ------------------------------------------------------

    @app.exception_handler(RAGError)
    async def rag_error_handler(request: Request, exc: RAGError):
        logger.warning(
            f"[API] {request.method} {request.url.path} -> {exc.status_code} {exc.kind}: {exc.message}"
        )
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"error": "validation", "message": problems or "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal", "message": "Internal server error"},
        )

    def _pipeline(request: Request) -> RAGPipeline:
        current = request.app.state.pipeline
        if current is None:
            raise DependencyUnavailableError("Pipeline not ready")
        return current

    # --- Routes --------------------------------------------------------------

    @app.get("/api/health")
    async def health(request: Request):
        """Return pipeline status, store counts and configured models."""
        p = _pipeline(request)
        report = p.integrity_report()
        return {
            "status": "ok" if report.ok else "degraded",
            "documents": report.documents,
            "ingestedDocuments": report.ingested_documents,
            "fragments": report.fragments,
            "embeddings": report.embeddings,
            "provider": p.config.provider,
            "embedModel": p.embedder.model,
            "llmModel": p.generator.model,
            "topK": p.config.top_k,
            "maxContextChars": p.config.max_context_chars,
        }

    @app.get("/api/documents")
    async def list_documents(request: Request):
        p = _pipeline(request)
        return {
            "documents": [
                _document(doc, p.store.count_fragments(doc.id)) for doc in p.list_documents()
            ]
        }

    @app.delete("/api/documents/{document_id}")
    async def delete_document(document_id: int, request: Request):
        _pipeline(request).delete_document(document_id)
        logger.info(f"[API] Deleted document {document_id}")
        return {"deleted": document_id}

    @app.post("/api/ingest")
    async def ingest(body: IngestRequest, request: Request):
        """Chunk and embed one registered document."""
        logger.info(f"[API] Ingest | document={body.document_id}")
        result = await _pipeline(request).ingest(body.document_id)
        return {
            "documentId": result.document_id,
            "chunksCreated": result.chunks_created,
            "embeddingsCreated": result.embeddings_created,
            "model": result.model,
        }

    @app.post("/api/query")
    async def query(body: QueryRequest, request: Request):
        logger.info(f"[API] Query | {truncate_text(body.question, 80)!r}")
        result = await _pipeline(request).query(body.question, body.conversation_id)
        return result.to_dict()

    @app.post("/api/query/stream")
    async def query_stream(body: QueryRequest, request: Request):
        """
        Stream the answer as NDJSON.

        Retrieval and the first increment happen before the response starts,
        so those failures still get their status code. Later failures arrive
        as a terminal `error` event. A client disconnect cancels generation
        and the partial answer is kept.
        """
        logger.info(f"[API] Stream query | {truncate_text(body.question, 80)!r}")
        events = await _pipeline(request).open_stream(body.question, body.conversation_id)
        iterator = events.__aiter__()
        try:
            first: Optional[StreamEvent] = await iterator.__anext__()
        except StopAsyncIteration:
            first = None

        async def body_lines() -> AsyncIterator[bytes]:
            try:
                if first is not None:
                    yield _ndjson(first)
                async for event in iterator:
                    yield _ndjson(event)
            except RAGError as exc:
                yield _ndjson(StreamEvent(event=StreamEventType.ERROR, data=exc.to_dict()))
            finally:
                await iterator.aclose()

        return StreamingResponse(body_lines(), media_type="application/x-ndjson")

    @app.get("/api/conversations/{conversation_id}")
    async def get_conversation(conversation_id: int, request: Request):
        conversation, messages = _pipeline(request).get_conversation(conversation_id)
        return {
            "id": conversation.id,
            "title": conversation.title,
            "createdAt": conversation.created_at.isoformat(),
            "updatedAt": conversation.updated_at.isoformat(),
            "messages": [_message(m) for m in messages],
        }

    @app.delete("/api/conversations/{conversation_id}")
    async def delete_conversation(conversation_id: int, request: Request):
        _pipeline(request).delete_conversation(conversation_id)
        logger.info(f"[API] Deleted conversation {conversation_id}")
        return {"deleted": conversation_id}

    return app


app = create_app()
