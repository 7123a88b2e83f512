import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from tool_relay.harness import (
    ITERATION_LIMIT_MESSAGE,
    NO_TEXT_PLACEHOLDER,
    AgentLoop,
    OpenAIOracle,
    OracleResponseError,
    build_system_prompt,
)
from tool_relay.models import (
    AssistantTurn,
    CapabilityDescriptor,
    Envelope,
    OracleResponse,
    StopCondition,
    TextContent,
    ToolInvocationRequest,
    ToolResult,
    ToolResults,
    UserText,
)
from tool_relay.transport import LocalTransport, TransportError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _end(text: str) -> OracleResponse:
    return OracleResponse(stop=StopCondition.END, segments=[TextContent(payload=text)] if text else [])


def _tools(*calls: tuple[str, str, dict], text: str = "") -> OracleResponse:
    segments = [TextContent(payload=text)] if text else []
    segments += [ToolInvocationRequest(id=i, name=n, arguments=a) for i, n, a in calls]
    return OracleResponse(stop=StopCondition.TOOL_REQUESTS, segments=segments)


def _oracle(*responses: OracleResponse) -> MagicMock:
    oracle = MagicMock()
    oracle.complete.side_effect = list(responses)
    return oracle


def _assert_results_match_requests(conversation):
    for previous, message in zip(conversation, conversation[1:]):
        if isinstance(message, ToolResults):
            assert isinstance(previous, AssistantTurn)
            assert [r.id for r in message.results] == [q.id for q in previous.requests()]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_direct_answer_without_tools(invoker):
    oracle = _oracle(_end("4"))
    loop = AgentLoop(oracle, LocalTransport(invoker))

    assert loop.process_query("What is 2 + 2?") == "4"
    assert oracle.complete.call_count == 1
    assert loop.conversation == [UserText(text="What is 2 + 2?")]


def test_insert_then_answer(invoker):
    oracle = _oracle(
        _tools(("call_1", "query_database", {"sql": "INSERT INTO books(title, author) VALUES ('Dune', 'Frank Herbert')"})),
        _end("Added Dune."),
    )
    loop = AgentLoop(oracle, LocalTransport(invoker))

    assert loop.process_query("Add Dune to the books table") == "Added Dune."

    user, turn, results = loop.conversation
    assert isinstance(turn, AssistantTurn)
    assert isinstance(results, ToolResults)
    (result,) = results.results
    assert result.id == "call_1"
    assert result.is_error is False
    assert json.loads(result.joined_text()) == {"changes": 1, "last_insert_rowid": 9}

    # Second oracle call sees the appended turn and results.
    second_conversation = oracle.complete.call_args_list[1].args[0]
    assert second_conversation == [user, turn, results]


def test_backend_result_passes_through_transport():
    transport = MagicMock()
    transport.discover.return_value = []
    transport.invoke.return_value = Envelope.text(json.dumps({"changes": 1, "last_insert_rowid": 9}))
    oracle = _oracle(
        _tools(("t1", "query_database", {"sql": "INSERT INTO books(title) VALUES ('Dune')"})),
        _end("Added Dune."),
    )

    assert AgentLoop(oracle, transport).process_query("add dune") == "Added Dune."
    transport.invoke.assert_called_once_with("query_database", {"sql": "INSERT INTO books(title) VALUES ('Dune')"})


def test_unknown_capability_does_not_abort(invoker):
    oracle = _oracle(
        _tools(("call_1", "delete_everything", {})),
        _end("I can't do that."),
    )
    loop = AgentLoop(oracle, LocalTransport(invoker))

    assert loop.process_query("Delete everything") == "I can't do that."
    result = loop.conversation[2].results[0]
    assert result.is_error is True
    assert "delete_everything" in result.joined_text()


def test_iteration_limit_stops_after_ten_round_trips(invoker):
    responses = [_tools((f"call_{i}", "list_directory", {})) for i in range(11)]
    oracle = _oracle(*responses)
    loop = AgentLoop(oracle, LocalTransport(invoker))

    assert loop.process_query("loop forever") == ITERATION_LIMIT_MESSAGE
    assert oracle.complete.call_count == 10
    assert len(loop.conversation) == 1 + 2 * 10


def test_custom_iteration_ceiling(invoker):
    oracle = _oracle(*[_tools(("c", "list_directory", {})) for _ in range(5)])
    loop = AgentLoop(oracle, LocalTransport(invoker), max_iterations=3)
    assert loop.process_query("x") == ITERATION_LIMIT_MESSAGE
    assert oracle.complete.call_count == 3


def test_answer_on_last_allowed_round_is_returned(invoker):
    responses = [_tools((f"c{i}", "list_directory", {})) for i in range(9)] + [_end("done")]
    loop = AgentLoop(_oracle(*responses), LocalTransport(invoker))
    assert loop.process_query("x") == "done"


# ---------------------------------------------------------------------------
# Ordering and bookkeeping
# ---------------------------------------------------------------------------


def test_requests_run_sequentially_in_emitted_order(invoker):
    oracle = _oracle(
        _tools(
            ("a", "query_database", {"sql": "CREATE TABLE log (step TEXT)"}),
            ("b", "query_database", {"sql": "INSERT INTO log VALUES ('first')"}),
            ("c", "query_database", {"sql": "SELECT step FROM log"}),
            text="Let me set that up.",
        ),
        _end("ok"),
    )
    loop = AgentLoop(oracle, LocalTransport(invoker))
    loop.process_query("log something")

    turn, results = loop.conversation[1], loop.conversation[2]
    assert turn.segments[0] == TextContent(payload="Let me set that up.")
    assert [r.id for r in results.results] == ["a", "b", "c"]
    assert json.loads(results.results[2].joined_text()) == [{"step": "first"}]
    _assert_results_match_requests(loop.conversation)


def test_result_count_matches_request_count_across_turns(invoker):
    oracle = _oracle(
        _tools(("1", "list_directory", {}), ("2", "read_file", {"path": "missing.txt"})),
        _tools(("3", "write_file", {"path": "x.txt", "content": "x"})),
        _tools(("4", "nope", {}), ("5", "read_file", {"path": "x.txt"}), ("6", "list_directory", {})),
        _end("finished"),
    )
    loop = AgentLoop(oracle, LocalTransport(invoker))

    assert loop.process_query("busy") == "finished"
    _assert_results_match_requests(loop.conversation)
    errors = [r.is_error for m in loop.conversation if isinstance(m, ToolResults) for r in m.results]
    assert errors == [False, True, False, True, False, False]


@pytest.mark.parametrize("stop", [StopCondition.END, StopCondition.OTHER])
def test_placeholder_when_no_text(invoker, stop):
    loop = AgentLoop(_oracle(OracleResponse(stop=stop)), LocalTransport(invoker))
    assert loop.process_query("hello") == NO_TEXT_PLACEHOLDER


def test_other_stop_returns_available_text(invoker):
    response = OracleResponse(stop=StopCondition.OTHER, segments=[TextContent(payload="partial")])
    loop = AgentLoop(_oracle(response), LocalTransport(invoker))
    assert loop.process_query("hello") == "partial"


def test_text_segments_are_joined(invoker):
    response = OracleResponse(
        stop=StopCondition.END,
        segments=[TextContent(payload="line one"), TextContent(payload="line two")],
    )
    loop = AgentLoop(_oracle(response), LocalTransport(invoker))
    assert loop.process_query("hello") == "line one\nline two"


def test_same_oracle_script_gives_same_transcript(settings, store):
    from tool_relay.capabilities import build_registry
    from tool_relay.registry import CapabilityInvoker

    def run():
        invoker = CapabilityInvoker(build_registry(settings, store))
        oracle = _oracle(_tools(("1", "list_directory", {}), ("2", "nope", {})), _end("done"))
        loop = AgentLoop(oracle, LocalTransport(invoker))
        return loop.process_query("q"), loop.conversation

    assert run() == run()


# ---------------------------------------------------------------------------
# Protocol failures and catalogue
# ---------------------------------------------------------------------------


def test_transport_error_aborts_query():
    transport = MagicMock()
    transport.discover.return_value = []
    transport.invoke.side_effect = TransportError("Capability host closed the connection.")
    oracle = _oracle(_tools(("1", "list_directory", {})), _end("never"))

    with pytest.raises(TransportError):
        AgentLoop(oracle, transport).process_query("x")
    assert oracle.complete.call_count == 1


def test_catalogue_and_prompt_come_from_discovery(invoker):
    oracle = _oracle(_end("hi"))
    loop = AgentLoop(oracle, LocalTransport(invoker))
    loop.process_query("hello")

    _, catalogue, system_prompt = oracle.complete.call_args.args
    assert [d.name for d in catalogue] == [d.name for d in invoker.discover()]
    assert "- get_weather: Get the current weather" in system_prompt
    assert system_prompt == loop.system_prompt


def test_system_prompt_tracks_any_catalogue():
    prompt = build_system_prompt([CapabilityDescriptor(name="ping", description="Ping a host.")])
    assert "- ping: Ping a host." in prompt


# ---------------------------------------------------------------------------
# OpenAI oracle adapter
# ---------------------------------------------------------------------------


def _completion(finish_reason, content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(finish_reason=finish_reason, message=message)])


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def oracle():
    oracle = OpenAIOracle(model="test/model", api_key="test-key")
    oracle._client = MagicMock()
    return oracle


def test_oracle_maps_tool_calls(oracle):
    oracle._client.chat.completions.create.return_value = _completion(
        "tool_calls",
        content="Checking.",
        tool_calls=[_tool_call("call_9", "get_weather", '{"city": "London"}')],
    )
    response = oracle.complete([UserText(text="weather?")], [], "system")

    assert response.stop is StopCondition.TOOL_REQUESTS
    assert response.text() == "Checking."
    assert response.requests() == [
        ToolInvocationRequest(id="call_9", name="get_weather", arguments={"city": "London"})
    ]


@pytest.mark.parametrize(
    "finish_reason, expected",
    [("stop", StopCondition.END), ("length", StopCondition.OTHER), ("content_filter", StopCondition.OTHER)],
)
def test_oracle_maps_finish_reasons(oracle, finish_reason, expected):
    oracle._client.chat.completions.create.return_value = _completion(finish_reason, content="hi")
    assert oracle.complete([UserText(text="x")], [], "system").stop is expected


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"a string"'])
def test_oracle_keeps_malformed_arguments_raw(oracle, raw):
    oracle._client.chat.completions.create.return_value = _completion(
        "tool_calls", tool_calls=[_tool_call("c", "read_file", raw)]
    )
    (request,) = oracle.complete([UserText(text="x")], [], "system").requests()
    assert request == ToolInvocationRequest(id="c", name="read_file", raw_arguments=raw)


def test_malformed_arguments_come_back_as_error_result(oracle, invoker):
    oracle._client.chat.completions.create.side_effect = [
        _completion(
            "tool_calls",
            tool_calls=[
                _tool_call("bad", "write_file", "{not json"),
                _tool_call("good", "list_directory", "{}"),
            ],
        ),
        _completion("stop", content="recovered"),
    ]
    transport = MagicMock(wraps=LocalTransport(invoker))
    loop = AgentLoop(oracle, transport)

    assert loop.process_query("x") == "recovered"

    results = loop.conversation[2].results
    assert [r.id for r in results] == ["bad", "good"]
    assert results[0].is_error is True
    assert "not a valid JSON object: {not json" in results[0].joined_text()
    assert results[1].is_error is False
    transport.invoke.assert_called_once_with("list_directory", {})
    _assert_results_match_requests(loop.conversation)

    # The raw text goes back to the oracle unchanged, followed by the error.
    messages = oracle._client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[2]["tool_calls"][0]["function"]["arguments"] == "{not json"
    assert messages[3]["content"].startswith("ERROR: Tool call arguments")


def test_oracle_with_no_choices_is_an_oracle_error(oracle):
    oracle._client.chat.completions.create.return_value = SimpleNamespace(choices=[])
    with pytest.raises(OracleResponseError):
        oracle.complete([UserText(text="x")], [], "system")


def test_oracle_renders_conversation(oracle):
    oracle._client.chat.completions.create.return_value = _completion("stop", content="done")
    catalogue = [
        CapabilityDescriptor(
            name="read_file",
            description="Read a file.",
            input_schema={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        )
    ]
    conversation = [
        UserText(text="read a.txt and b.txt"),
        AssistantTurn(
            segments=[
                TextContent(payload="Reading."),
                ToolInvocationRequest(id="1", name="read_file", arguments={"path": "a.txt"}),
                ToolInvocationRequest(id="2", name="read_file", arguments={"path": "b.txt"}),
            ]
        ),
        ToolResults(
            results=[
                ToolResult(id="1", content=[TextContent(payload="alpha")]),
                ToolResult(id="2", content=[TextContent(payload="No such file")], is_error=True),
            ]
        ),
    ]

    oracle.complete(conversation, catalogue, "be helpful")
    kwargs = oracle._client.chat.completions.create.call_args.kwargs

    assert kwargs["model"] == "test/model"
    assert kwargs["tools"] == [
        {
            "type": "function",
            "function": {
                "name": "read_file",
                "description": "Read a file.",
                "parameters": catalogue[0].input_schema,
            },
        }
    ]
    messages = kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "be helpful"}
    assert messages[1] == {"role": "user", "content": "read a.txt and b.txt"}
    assert messages[2]["role"] == "assistant"
    assert messages[2]["content"] == "Reading."
    assert [c["id"] for c in messages[2]["tool_calls"]] == ["1", "2"]
    assert json.loads(messages[2]["tool_calls"][0]["function"]["arguments"]) == {"path": "a.txt"}
    assert messages[3] == {"role": "tool", "tool_call_id": "1", "content": "alpha"}
    assert messages[4] == {"role": "tool", "tool_call_id": "2", "content": "ERROR: No such file"}
