"""
Generation Orchestrator
------------------------
Drives one streamed answer through its lifecycle:

    IDLE -> PROMPTING -> STREAMING -> COMPLETED | CANCELLED | FAILED

  PROMPTING   question + assembled context -> fixed prompt template
  STREAMING   text increments from the LLM client are accumulated and
              re-emitted as token events
  COMPLETED   answer + citations persisted as a conversation message
  CANCELLED   cancel event observed between increments, or the consumer
              closed the stream; the partial answer is persisted as final
  FAILED      provider error or deadline expiry; nothing persisted (unless
              persist_partial_on_timeout is enabled for the deadline case)

The deadline covers the whole stream: every increment races the time left.
A provider call that loses the race is abandoned, its result ignored.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from loguru import logger
from pydantic import BaseModel

from secondbrain.config import RAGConfig
from secondbrain.errors import DependencyTimeoutError, InternalError, RAGError
from secondbrain.generation.context import AssembledContext
from secondbrain.generation.prompts import build_prompt
from secondbrain.providers.base import LLMClient
from secondbrain.schemas import Citation, GenerationState, MessageRole
from secondbrain.storage.base import DocumentStore
from secondbrain.utils.helpers import truncate_text


class StreamEventType(str, Enum):
    """Events emitted to the consumer of a streamed answer."""

    TOKEN = "token"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


class StreamEvent(BaseModel):
    event: StreamEventType
    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {"event": self.event.value, "data": self.data}


@dataclass
class GenerationRun:
    """Mutable state of a single generation request."""

    state: GenerationState = GenerationState.IDLE
    parts: list[str] = field(default_factory=list)
    sources: list[Citation] = field(default_factory=list)
    conversation_id: Optional[int] = None
    message_id: Optional[int] = None
    error: Optional[RAGError] = None

    @property
    def answer(self) -> str:
        return "".join(self.parts).strip()

    def terminal_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "answer": self.answer,
            "sources": [
                {
                    "documentId": s.document_id,
                    "filename": s.filename,
                    "chunkIndex": s.chunk_index,
                }
                for s in self.sources
            ],
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
        }


class GenerationOrchestrator:
    """
    Streams an answer from an LLMClient and persists the outcome.

    Usage:
        orchestrator = GenerationOrchestrator(llm, store, config)
        async for event in orchestrator.stream(question, assembled, cancel=event):
            ...
        run = await orchestrator.generate(question, assembled)
    """

    def __init__(self, llm: LLMClient, store: DocumentStore, config: RAGConfig) -> None:
        self.llm = llm
        self.store = store
        self.timeout_s = config.generation_timeout_s
        self.persist_partial_on_timeout = config.persist_partial_on_timeout

    @property
    def model(self) -> str:
        return self.llm.model

    async def stream(
        self,
        question: str,
        assembled: AssembledContext,
        *,
        conversation_id: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
        run: Optional[GenerationRun] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield token events, then one terminal COMPLETE or CANCELLED event.

        Raises:
            DependencyTimeoutError: the deadline expired first.
            RAGError: whatever the LLM client raised (state FAILED).
            InternalError: the LLM client raised something outside the taxonomy.
        """
        run = run if run is not None else GenerationRun()
        run.sources = list(assembled.sources)
        run.conversation_id = conversation_id

        run.state = GenerationState.PROMPTING
        prompt = build_prompt(question, assembled.context)
        logger.debug(
            f"[Orchestrator] {self.llm.model} | prompt={len(prompt)} chars | "
            f"{len(run.sources)} source(s) | question={truncate_text(question, 60)!r}"
        )

        run.state = GenerationState.STREAMING
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s
        increments = self.llm.stream(prompt).__aiter__()

        try:
            while True:
                if cancel is not None and cancel.is_set():
                    run.state = GenerationState.CANCELLED
                    break

                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    increment = await asyncio.wait_for(increments.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    run.state = GenerationState.COMPLETED
                    break

                run.parts.append(increment)
                yield StreamEvent(
                    event=StreamEventType.TOKEN,
                    data={"token": increment, "index": len(run.parts) - 1},
                )

        except asyncio.TimeoutError:
            run.state = GenerationState.FAILED
            run.error = DependencyTimeoutError(
                f"LLM generation timeout after {self.timeout_s:g} seconds",
                remediation="Retry the question, or use a smaller / faster model",
            )
            logger.warning(
                f"[Orchestrator] Deadline expired after {len(run.parts)} increment(s)"
            )
            if self.persist_partial_on_timeout and run.answer:
                self._persist(question, run)
            raise run.error

        except RAGError as exc:
            run.state = GenerationState.FAILED
            run.error = exc
            logger.error(f"[Orchestrator] Generation failed: {exc.kind}: {exc.message}")
            raise

        except Exception as exc:
            run.state = GenerationState.FAILED
            run.error = InternalError(f"LLM client failed unexpectedly: {type(exc).__name__}")
            logger.exception(f"[Orchestrator] Unexpected error from {self.llm.model}")
            raise run.error from exc

        except (GeneratorExit, asyncio.CancelledError):
            # Consumer went away mid-stream: keep what was produced.
            run.state = GenerationState.CANCELLED
            logger.info(
                f"[Orchestrator] Stream closed by consumer after {len(run.parts)} increment(s)"
            )
            self._persist(question, run)
            raise

        finally:
            await self._close(increments)

        self._persist(question, run)
        logger.info(
            f"[Orchestrator] {run.state.value} | {len(run.parts)} increment(s) | "
            f"{len(run.answer)} chars | message={run.message_id}"
        )
        terminal = (
            StreamEventType.COMPLETE
            if run.state == GenerationState.COMPLETED
            else StreamEventType.CANCELLED
        )
        yield StreamEvent(event=terminal, data=run.terminal_payload())

    async def generate(
        self,
        question: str,
        assembled: AssembledContext,
        *,
        conversation_id: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> GenerationRun:
        """Drain stream() and return the finished run."""
        run = GenerationRun()
        async for _ in self.stream(
            question, assembled, conversation_id=conversation_id, cancel=cancel, run=run
        ):
            pass
        return run

    # --- Internals ----------------------------------------------------------------

    @staticmethod
    async def _close(increments: AsyncIterator[str]) -> None:
        aclose = getattr(increments, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as exc:
            # Generator still suspended inside an abandoned provider call
            logger.debug(f"[Orchestrator] Could not close provider stream: {exc}")

    def _persist(self, question: str, run: GenerationRun) -> None:
        """Store the question and the (possibly partial) answer with its citations."""
        if run.conversation_id is None:
            conversation = self.store.create_conversation(title=truncate_text(question, 60))
            run.conversation_id = conversation.id

        self.store.add_message(run.conversation_id, MessageRole.USER, question.strip())
        message = self.store.add_message(
            run.conversation_id,
            MessageRole.ASSISTANT,
            run.answer,
            state=run.state,
            sources=run.sources,
        )
        run.message_id = message.id
