"""Unit tests for streamed generation: completion, cancellation, deadline, failure."""
import asyncio

import pytest

from secondbrain.errors import (
    DependencyTimeoutError,
    DependencyUnavailableError,
    InternalError,
    NotFoundError,
)
from secondbrain.generation.context import AssembledContext
from secondbrain.generation.orchestrator import GenerationOrchestrator, GenerationRun, StreamEventType
from secondbrain.schemas import Citation, GenerationState, MessageRole

from tests.fakes import FakeLLM

SOURCES = [
    Citation(document_id=1, filename="plan.txt", chunk_index=0),
    Citation(document_id=1, filename="plan.txt", chunk_index=3),
]


@pytest.fixture
def assembled():
    return AssembledContext(context="The launch is on Friday.", sources=list(SOURCES), fragments_used=2)


def _assistant_messages(store):
    return [
        m
        for conversation in store.list_conversations()
        for m in store.list_messages(conversation.id)
        if m.role == MessageRole.ASSISTANT
    ]


class TestCompletion:
    @pytest.mark.asyncio
    async def test_tokens_then_complete_event(self, store, config, assembled):
        llm = FakeLLM(tokens=["Friday", ", at noon."])
        orchestrator = GenerationOrchestrator(llm, store, config)

        events = [e async for e in orchestrator.stream("When is the launch?", assembled)]

        assert [e.event for e in events] == [
            StreamEventType.TOKEN,
            StreamEventType.TOKEN,
            StreamEventType.COMPLETE,
        ]
        assert [e.data["token"] for e in events[:2]] == ["Friday", ", at noon."]
        terminal = events[-1].data
        assert terminal["state"] == "completed"
        assert terminal["answer"] == "Friday, at noon."
        assert [s["chunkIndex"] for s in terminal["sources"]] == [0, 3]
        assert "The launch is on Friday." in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_persists_question_and_answer_with_sources(self, store, config, assembled):
        orchestrator = GenerationOrchestrator(FakeLLM(tokens=["Friday"]), store, config)

        run = await orchestrator.generate("When is the launch?", assembled)

        assert run.state == GenerationState.COMPLETED
        messages = store.list_messages(run.conversation_id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[0].content == "When is the launch?"
        assert messages[1].id == run.message_id
        assert messages[1].content == "Friday"
        assert messages[1].state == GenerationState.COMPLETED
        assert messages[1].sources == SOURCES

    @pytest.mark.asyncio
    async def test_appends_to_existing_conversation(self, store, config, assembled):
        conversation = store.create_conversation("Launch")
        orchestrator = GenerationOrchestrator(FakeLLM(), store, config)

        run = await orchestrator.generate("q1", assembled, conversation_id=conversation.id)
        await orchestrator.generate("q2", assembled, conversation_id=conversation.id)

        assert run.conversation_id == conversation.id
        assert len(store.list_messages(conversation.id)) == 4


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_event_keeps_partial_answer(self, store, config, assembled):
        llm = FakeLLM(tokens=["one", " two", " three"])
        orchestrator = GenerationOrchestrator(llm, store, config)
        cancel = asyncio.Event()

        events = []
        async for event in orchestrator.stream("count", assembled, cancel=cancel):
            events.append(event)
            if event.event == StreamEventType.TOKEN:
                cancel.set()

        assert [e.event for e in events] == [StreamEventType.TOKEN, StreamEventType.CANCELLED]
        assert events[-1].data["answer"] == "one"
        [message] = _assistant_messages(store)
        assert message.state == GenerationState.CANCELLED
        assert message.content == "one"
        assert message.sources == SOURCES

    @pytest.mark.asyncio
    async def test_consumer_closing_stream_counts_as_cancel(self, store, config, assembled):
        orchestrator = GenerationOrchestrator(FakeLLM(tokens=["partial", " rest"]), store, config)

        stream = orchestrator.stream("q", assembled)
        first = await stream.__anext__()
        await stream.aclose()

        assert first.data["token"] == "partial"
        [message] = _assistant_messages(store)
        assert message.state == GenerationState.CANCELLED
        assert message.content == "partial"


class TestDeadline:
    @pytest.mark.asyncio
    async def test_timeout_fails_and_persists_nothing(self, store, config, assembled):
        config = config.model_copy(update={"generation_timeout_s": 0.05})
        orchestrator = GenerationOrchestrator(FakeLLM(tokens=["a", "b"], stall_after=1), store, config)

        events = []
        with pytest.raises(DependencyTimeoutError):
            async for event in orchestrator.stream("q", assembled):
                events.append(event)

        assert [e.event for e in events] == [StreamEventType.TOKEN]
        assert _assistant_messages(store) == []
        assert store.get_conversation(1) is None

    @pytest.mark.asyncio
    async def test_timeout_can_keep_partial_answer(self, store, config, assembled):
        config = config.model_copy(
            update={"generation_timeout_s": 0.05, "persist_partial_on_timeout": True}
        )
        orchestrator = GenerationOrchestrator(FakeLLM(tokens=["a", "b"], stall_after=1), store, config)

        with pytest.raises(DependencyTimeoutError):
            await orchestrator.generate("q", assembled)

        [message] = _assistant_messages(store)
        assert message.state == GenerationState.FAILED
        assert message.content == "a"


class TestFailure:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            DependencyUnavailableError("Cannot connect", remediation="ollama serve"),
            NotFoundError("Model missing", remediation="ollama pull llama3"),
        ],
    )
    async def test_provider_error_keeps_its_class_and_persists_nothing(
        self, store, config, assembled, error
    ):
        orchestrator = GenerationOrchestrator(FakeLLM(error=error), store, config)

        with pytest.raises(type(error)) as exc_info:
            await orchestrator.generate("q", assembled)

        assert exc_info.value.remediation == error.remediation
        assert _assistant_messages(store) == []


class TestUnexpectedProviderFailure:
    @pytest.mark.asyncio
    async def test_becomes_internal_error_and_fails_the_run(self, store, config, assembled):
        orchestrator = GenerationOrchestrator(
            FakeLLM(tokens=["Fri", "day"], error=AttributeError("boom"), error_after=1), store, config
        )
        run = GenerationRun()

        with pytest.raises(InternalError):
            async for _ in orchestrator.stream("q", assembled, run=run):
                pass

        assert run.state == GenerationState.FAILED
        assert isinstance(run.error, InternalError)
        assert run.parts == ["Fri"]
        assert _assistant_messages(store) == []
