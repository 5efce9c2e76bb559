import asyncio

from app.core.exceptions import (
    ProviderAuthError,
    ProviderProtocolError,
    ProviderRateLimitError,
)
from app.services.completion import (
    Done,
    Failed,
    Fatal,
    Ok,
    ProtocolFailed,
    RateLimited,
    Token,
)
from tests.fakes import ScriptedProvider, make_orchestrator, make_request


def collect(orchestrator, request):
    async def run():
        return [event async for event in orchestrator.stream(request)]

    return asyncio.run(run())


def tokens(events):
    return "".join(e.text for e in events if isinstance(e, Token))


def test_primary_only_relays_tokens_and_completes():
    primary = ScriptedProvider("responses", ["Hel", "lo!"])
    orchestrator = make_orchestrator(primary)

    events = collect(orchestrator, make_request())

    assert events == [Token("Hel"), Token("lo!"), Done(Ok("Hello!"))]
    assert primary.closed == 1


def test_streamed_chunks_equal_complete_text():
    request = make_request()
    streamed = collect(make_orchestrator(ScriptedProvider("responses", ["A", "B", "C"])), request)
    result = asyncio.run(
        make_orchestrator(ScriptedProvider("responses", ["A", "B", "C"])).complete(request)
    )

    assert tokens(streamed) == result.text == "ABC"


def test_empty_answer_is_replaced_with_fallback():
    events = collect(make_orchestrator(ScriptedProvider("responses", [])), make_request())

    assert events == [
        Token("Sorry, please try again later."),
        Done(Ok("Sorry, please try again later.")),
    ]


def test_without_vector_store_primary_failure_does_not_use_legacy():
    primary = ScriptedProvider("responses", [ProviderProtocolError("boom")])
    legacy = ScriptedProvider("legacy", ["unused"])

    events = collect(make_orchestrator(primary, legacy), make_request())

    assert legacy.requests == []
    assert events[-1] == Done(ProtocolFailed("Sorry, please try again later."))
    assert tokens(events) == "Sorry, please try again later."


def test_primary_failing_mid_stream_falls_back_without_leaking_partial_output():
    primary = ScriptedProvider("responses", ["Partial ", ProviderProtocolError("stream broke")])
    legacy = ScriptedProvider("legacy", ["From ", "legacy"])
    request = make_request(vector_store_id="vs_123")

    events = collect(make_orchestrator(primary, legacy), request)

    assert tokens(events) == "From legacy"
    assert "Partial" not in tokens(events)
    assert events[-1] == Done(Ok("From legacy"))
    assert legacy.requests == [request]


def test_primary_success_with_vector_store_releases_held_output():
    primary = ScriptedProvider("responses", ["Grounded ", "answer"])
    legacy = ScriptedProvider("legacy", ["unused"])

    events = collect(make_orchestrator(primary, legacy), make_request(vector_store_id="vs_123"))

    assert events == [Token("Grounded "), Token("answer"), Done(Ok("Grounded answer"))]
    assert legacy.requests == []


def test_both_protocols_failing_yields_fallback_text():
    primary = ScriptedProvider("responses", [ProviderProtocolError("down")])
    legacy = ScriptedProvider("legacy", [ProviderProtocolError("also down")])

    result = asyncio.run(
        make_orchestrator(primary, legacy).complete(make_request(vector_store_id="vs_123"))
    )

    assert result == ProtocolFailed("Sorry, please try again later.")


def test_rate_limit_is_retried_with_exponential_backoff():
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    primary = ScriptedProvider(
        "responses",
        [ProviderRateLimitError("slow down")],
        [ProviderRateLimitError("slow down")],
        ["Finally"],
    )
    orchestrator = make_orchestrator(primary, sleep=record_sleep, base_delay=1.0)

    events = collect(orchestrator, make_request())

    assert delays == [1.0, 2.0]
    assert events == [Token("Finally"), Done(Ok("Finally"))]
    assert len(primary.requests) == 3


def test_rate_limit_exhausted_returns_fallback():
    primary = ScriptedProvider(
        "responses",
        *[[ProviderRateLimitError("slow down")] for _ in range(3)],
    )

    events = collect(make_orchestrator(primary), make_request())

    assert events == [
        Token("Sorry, please try again later."),
        Done(RateLimited("Sorry, please try again later.")),
    ]
    assert len(primary.requests) == 3


def test_rate_limit_after_partial_output_keeps_partial_text():
    primary = ScriptedProvider("responses", ["Half", ProviderRateLimitError("slow down")])

    events = collect(make_orchestrator(primary), make_request())

    assert events == [Token("Half"), Done(RateLimited("Half"))]
    assert len(primary.requests) == 1


def test_auth_error_is_fatal_and_not_retried():
    primary = ScriptedProvider("responses", [ProviderAuthError("bad key")], ["never"])
    legacy = ScriptedProvider("legacy", ["never"])

    events = collect(make_orchestrator(primary, legacy), make_request(vector_store_id="vs_1"))

    assert events == [Failed(Fatal("Sorry, please try again later."))]
    assert len(primary.requests) == 1
    assert legacy.requests == []


def test_consumer_closing_early_closes_upstream():
    primary = ScriptedProvider("responses", ["one", "two", "three"])
    orchestrator = make_orchestrator(primary)

    async def run():
        events = orchestrator.stream(make_request())
        first = await events.__anext__()
        await events.aclose()
        return first

    assert asyncio.run(run()) == Token("one")
    assert primary.closed == 1
