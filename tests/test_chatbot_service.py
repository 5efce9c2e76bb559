import asyncio
from datetime import date
from types import SimpleNamespace

import anyio
import pytest

from app.core.exceptions import (
    ForbiddenError,
    ModelError,
    NotFoundError,
    ProviderAuthError,
    ProviderProtocolError,
)
from app.schemas.chatbot import ChatbotConfig, SubmitMessageRequest
from app.services.chatbot import ChatbotService
from app.services.providers import ResponsesProvider
from app.services.redaction import HeuristicNameDetector, build_redactor
from app.services.session_turns import ActiveStreamRegistry
from tests.fakes import (
    InMemoryChatbotRepository,
    InMemoryDocumentRepository,
    InMemoryMessageRepository,
    ScriptedProvider,
    make_chatbot,
    make_orchestrator,
)

FALLBACK = "Sorry, please try again later."


def build_service(
    primary=None, legacy=None, chatbots=None, documents=None, registry=None, messages=None
):
    primary = primary or ScriptedProvider("responses")
    chatbots = chatbots if chatbots is not None else [make_chatbot()]
    service = ChatbotService(
        chatbot_repo=InMemoryChatbotRepository(chatbots),
        message_repo=messages or InMemoryMessageRepository(),
        document_repo=InMemoryDocumentRepository(documents),
        orchestrator=make_orchestrator(primary, legacy),
        redactor=build_redactor(HeuristicNameDetector()),
        stream_registry=registry or ActiveStreamRegistry(),
    )
    return service


def collect_stream(service, config, session_id="s1"):
    async def run():
        return [event async for event in service.stream_answer(config, session_id)]

    return asyncio.run(run())


def config_for(service, slug="support"):
    return asyncio.run(service.get_config(slug))


def test_streamed_fragments_are_persisted_as_one_answer():
    primary = ScriptedProvider("responses", ["Hel", "lo!"])
    service = build_service(primary)
    messages = service._message_repo
    messages.add(1, "s1", True, "hi")
    placeholder = messages.add(1, "s1", False, "")

    events = collect_stream(service, config_for(service))

    assert events[0] == ("session", {"sessionId": "s1"})
    assert events[1:3] == [("chunk", {"content": "Hel"}), ("chunk", {"content": "lo!"})]
    assert events[3][0] == "complete"
    assert events[3][1]["message"]["content"] == "Hello!"
    assert events[3][1]["message"]["isUser"] is False
    assert len(events) == 4
    assert placeholder.content == "Hello!"
    assert messages.updates == [(placeholder.id, "Hello!")]


def test_stream_rule_match_skips_provider():
    primary = ScriptedProvider("responses", ["unused"])
    chatbot = make_chatbot(
        behavior_rules=[{"condition": "pricing", "response": "See our pricing page."}]
    )
    service = build_service(primary, chatbots=[chatbot])
    service._message_repo.add(1, "s1", True, "What's your pricing?")
    placeholder = service._message_repo.add(1, "s1", False, "")

    events = collect_stream(service, config_for(service))

    assert [e[0] for e in events] == ["session", "chunk", "complete"]
    assert events[1][1] == {"content": "See our pricing page."}
    assert placeholder.content == "See our pricing page."
    assert primary.requests == []


def test_stream_without_pending_turn_reports_error():
    service = build_service()
    service._message_repo.add(1, "s1", True, "hi")

    events = collect_stream(service, config_for(service))

    assert events == [
        ("session", {"sessionId": "s1"}),
        ("error", {"message": "User message has no answer placeholder"}),
    ]


def test_second_concurrent_stream_is_rejected():
    registry = ActiveStreamRegistry()
    service = build_service(registry=registry)
    service._message_repo.add(1, "s1", True, "hi")
    service._message_repo.add(1, "s1", False, "")
    config = config_for(service)

    with registry.claim(config.id, "s1"):
        events = collect_stream(service, config)

    assert events[-1] == (
        "error", {"message": "A response is already streaming for this session"}
    )


def test_both_protocols_failing_persists_fallback():
    primary = ScriptedProvider("responses", [ProviderProtocolError("down")])
    legacy = ScriptedProvider("legacy", [ProviderProtocolError("down too")])
    service = build_service(primary, legacy, chatbots=[make_chatbot(vector_store_id="vs_1")])
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")

    events = collect_stream(service, config_for(service))

    assert [e[0] for e in events] == ["session", "chunk", "complete"]
    assert events[1][1] == {"content": FALLBACK}
    assert placeholder.content == FALLBACK


def test_fatal_provider_error_emits_error_and_persists_fallback():
    primary = ScriptedProvider("responses", [ProviderAuthError("bad key")])
    service = build_service(primary)
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")

    events = collect_stream(service, config_for(service))

    assert events[-1] == ("error", {"message": FALLBACK})
    assert "complete" not in [e[0] for e in events]
    assert placeholder.content == FALLBACK


def test_client_disconnect_persists_partial_answer():
    primary = ScriptedProvider("responses", ["Hel", "lo", " there"])
    service = build_service(primary)
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")
    config = config_for(service)

    async def run():
        events = service.stream_answer(config, "s1")
        seen = [await events.__anext__(), await events.__anext__()]
        await events.aclose()
        return seen

    seen = asyncio.run(run())

    assert seen[1] == ("chunk", {"content": "Hel"})
    assert placeholder.content == "Hel"
    assert primary.closed == 1


class StallingProvider:
    name = "stalling"

    def __init__(self):
        self.started = asyncio.Event()

    async def stream(self, request):
        self.started.set()
        await asyncio.sleep(3600)
        yield "never"


def test_cancelled_stream_without_tokens_persists_fallback():
    provider = StallingProvider()
    service = build_service(provider)
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")
    config = config_for(service)

    async def run():
        async def consume():
            return [event async for event in service.stream_answer(config, "s1")]

        task = asyncio.create_task(consume())
        await provider.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert placeholder.content == FALLBACK
    assert not service._streams.is_active(config.id, "s1")


class SlowMessageRepository(InMemoryMessageRepository):
    """Message writes take a database round trip."""

    async def update_content(self, message_id, content):
        await asyncio.sleep(0.05)
        return await super().update_content(message_id, content)


class StallingResponseStream:
    """Responses stream that sends one delta and then hangs."""

    def __init__(self):
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        yield SimpleNamespace(type="response.output_text.delta", delta="Hel")
        await asyncio.sleep(3600)

    async def close(self):
        await asyncio.sleep(0.01)
        self.closed = True


class StallingResponsesClient:
    def __init__(self, stream):
        self.stream = stream
        self.responses = self

    async def create(self, **kwargs):
        return self.stream


def test_cancel_scope_disconnect_persists_partial_answer_before_release():
    upstream = StallingResponseStream()
    provider = ResponsesProvider(lambda: StallingResponsesClient(upstream))
    service = build_service(provider, messages=SlowMessageRepository())
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")
    config = config_for(service)

    async def run():
        events = service.stream_answer(config, "s1")
        with anyio.CancelScope() as scope:
            async for name, _ in events:
                if name == "chunk":
                    scope.cancel()
        # Observed the moment the response ends
        return placeholder.content, upstream.closed, service._streams.is_active(config.id, "s1")

    content, closed, still_claimed = asyncio.run(run())

    assert content == "Hel"
    assert closed is True
    assert still_claimed is False


class FailingDocumentRepository:
    async def get_contents_by_chatbot(self, chatbot_id):
        raise RuntimeError("db down")


def test_failure_before_completion_persists_fallback_and_reports_it():
    primary = ScriptedProvider("responses", ["unused"])
    service = build_service(primary, chatbots=[make_chatbot(rag_enabled=True)])
    service._document_repo = FailingDocumentRepository()
    service._message_repo.add(1, "s1", True, "hi")
    placeholder = service._message_repo.add(1, "s1", False, "")
    config = config_for(service)

    events = collect_stream(service, config)

    assert events == [
        ("session", {"sessionId": "s1"}),
        ("error", {"message": FALLBACK}),
    ]
    assert placeholder.content == FALLBACK
    assert primary.requests == []
    assert not service._streams.is_active(config.id, "s1")


def closed_count_at_first_chunk(service, primary):
    config = config_for(service)

    async def run():
        events = service.stream_answer(config, "s1")
        try:
            async for name, _ in events:
                if name == "chunk":
                    return primary.closed
        finally:
            await events.aclose()

    return asyncio.run(run())


def test_vector_store_chatbots_receive_primary_chunks_after_it_finishes():
    primary = ScriptedProvider("responses", ["Hel", "lo!"])
    service = build_service(primary, chatbots=[make_chatbot(vector_store_id="vs_1")])
    service._message_repo.add(1, "s1", True, "hi")
    service._message_repo.add(1, "s1", False, "")

    assert closed_count_at_first_chunk(service, primary) == 1


def test_primary_only_chatbots_receive_chunks_as_produced():
    primary = ScriptedProvider("responses", ["Hel", "lo!"])
    service = build_service(primary)
    service._message_repo.add(1, "s1", True, "hi")
    service._message_repo.add(1, "s1", False, "")

    assert closed_count_at_first_chunk(service, primary) == 0


def test_submit_message_stream_mode_creates_placeholder():
    service = build_service()

    response = asyncio.run(
        service.submit_message(
            "support", SubmitMessageRequest(session_id="s1", message="hi", stream=True)
        )
    )

    stored = service._message_repo.messages
    assert [(m.is_user, m.content) for m in stored] == [(True, "hi"), (False, "")]
    assert response.message.content == ""
    assert response.session_id == "s1"


def test_submit_message_generates_session_id_and_answers():
    primary = ScriptedProvider("responses", ["Hi ", "there"])
    service = build_service(primary)

    response = asyncio.run(
        service.submit_message("support", SubmitMessageRequest(message="hello"))
    )

    assert response.session_id
    assert response.message.content == "Hi there"
    assert primary.requests[0].user_message == "hello"
    assert primary.requests[0].model == "gpt-4o-mini"
    assert primary.requests[0].temperature == pytest.approx(0.7)


def test_submit_message_rule_short_circuits():
    primary = ScriptedProvider("responses", ["unused"])
    chatbot = make_chatbot(
        behavior_rules=[{"condition": "pricing", "response": "See our pricing page."}]
    )
    service = build_service(primary, chatbots=[chatbot])

    response = asyncio.run(
        service.submit_message(
            "support", SubmitMessageRequest(session_id="s1", message="What's your pricing?")
        )
    )

    assert response.message.content == "See our pricing page."
    assert primary.requests == []


def test_submit_message_sends_prior_turns_and_documents():
    primary = ScriptedProvider("responses", ["Answer"])
    service = build_service(
        primary,
        chatbots=[make_chatbot(rag_enabled=True)],
        documents={1: ["We open at 9."]},
    )
    service._message_repo.add(1, "s1", False, "Welcome!")
    service._message_repo.add(1, "s1", True, "hi")
    service._message_repo.add(1, "s1", False, "Hello!")

    asyncio.run(
        service.submit_message("support", SubmitMessageRequest(session_id="s1", message="hours?"))
    )

    request = primary.requests[0]
    assert [(t.role, t.content) for t in request.history] == [
        ("assistant", "Welcome!"), ("user", "hi"), ("assistant", "Hello!"),
    ]
    assert request.documents == ("We open at 9.",)


def test_submit_message_fatal_error_persists_fallback_and_raises():
    service = build_service(ScriptedProvider("responses", [ProviderAuthError("bad key")]))

    with pytest.raises(ModelError):
        asyncio.run(
            service.submit_message("support", SubmitMessageRequest(session_id="s1", message="hi"))
        )

    assert service._message_repo.messages[-1].content == FALLBACK


def test_unknown_slug_raises_not_found():
    service = build_service()

    with pytest.raises(NotFoundError):
        asyncio.run(service.submit_message("missing", SubmitMessageRequest(message="hi")))


def test_public_chatbot_counts_views():
    chatbot = make_chatbot(welcome_messages=None)
    service = build_service(chatbots=[chatbot])

    info = asyncio.run(service.get_public_chatbot("support"))

    assert chatbot.views == 1
    assert info.welcome_messages == ["Hi there!"]
    assert info.suggested_questions == ["What are your hours?"]


def test_session_history_redacts_only_user_messages():
    service = build_service()
    service._message_repo.add(1, "s1", True, "My name is Alex")
    service._message_repo.add(1, "s1", False, "Hi Alex!")

    history = asyncio.run(service.get_session_history("support", "s1", redact=True))

    assert [m.content for m in history] == ["My name is [REDACTED]", "Hi Alex!"]


def test_logs_are_scoped_to_operator_and_enriched():
    chatbots = [
        make_chatbot(id=1, slug="support", name="Support Bot", user_id=7),
        make_chatbot(id=2, slug="sales", name="Sales Bot", user_id=7),
        make_chatbot(id=3, slug="other", name="Other Bot", user_id=99),
    ]
    service = build_service(chatbots=chatbots)
    repo = service._message_repo
    repo.add(1, "s1", True, "hello from support")
    repo.add(2, "s2", True, "hello from sales")
    repo.add(3, "s3", True, "hello from elsewhere")

    logs = asyncio.run(service.get_logs(user_id=7, page=1, page_size=1))

    assert logs.total_count == 2
    assert logs.total_pages == 2
    assert logs.logs[0].chatbot_name == "Sales Bot"
    assert logs.redaction_enabled is False

    with pytest.raises(ForbiddenError):
        asyncio.run(service.get_logs(user_id=7, chatbot_id=3))


def test_logs_end_date_is_inclusive():
    service = build_service()
    service._message_repo.add(1, "s1", True, "on the first of May")

    inclusive = asyncio.run(
        service.get_logs(user_id=7, start_date=date(2024, 5, 1), end_date=date(2024, 5, 1))
    )
    before = asyncio.run(service.get_logs(user_id=7, end_date=date(2024, 4, 30)))

    assert inclusive.total_count == 1
    assert before.total_count == 0


def test_preview_uses_default_model_without_history():
    primary = ScriptedProvider("responses", ["Preview answer"])
    service = build_service(primary)

    answer = asyncio.run(service.generate_preview("hi", "Be terse."))

    assert answer == "Preview answer"
    assert primary.requests[0].history == ()
    assert primary.requests[0].instructions == "Be terse."


def test_config_snapshot_scales_temperature():
    config = ChatbotConfig.from_model(make_chatbot(temperature=25, fallback_response=None))

    assert config.temperature_value == pytest.approx(0.25)
    assert config.fallback_text == "I'm sorry, I couldn't process your request at this time."
