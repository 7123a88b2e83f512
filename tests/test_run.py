from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from tool_relay import run
from tool_relay.harness import OracleResponseError
from tool_relay.transport import TransportError


def _settings(api_key="test-key"):
    return SimpleNamespace(
        openrouter_api_key=api_key,
        model="test/model",
        base_url="http://localhost",
        max_tokens=256,
        max_iterations=10,
        invoke_timeout=5.0,
    )


@pytest.fixture
def wiring():
    """Patch everything main() wires together; yields the mocks."""
    transport = MagicMock()
    agent = MagicMock(catalogue=[])
    with (
        patch.object(run, "Settings", return_value=_settings()),
        patch.object(run, "StdioTransport", return_value=transport),
        patch.object(run, "OpenAIOracle", return_value=MagicMock(model="test/model")),
        patch.object(run, "AgentLoop", return_value=agent),
        patch.object(run.Prompt, "ask") as ask,
        patch.object(run.display, "halt") as halt,
    ):
        yield SimpleNamespace(transport=transport, agent=agent, ask=ask, halt=halt)


def test_transport_failure_is_reported_and_exits(wiring):
    wiring.ask.side_effect = ["list my files"]
    wiring.agent.process_query.side_effect = TransportError("Capability host closed the connection.")

    with pytest.raises(SystemExit) as exc_info:
        run.main()

    assert exc_info.value.code == 1
    (message,), _ = wiring.halt.call_args
    assert "Capability host failure" in message
    assert "closed the connection" in message
    wiring.transport.close.assert_called_once()


def test_oracle_failure_is_reported_and_loop_continues(wiring):
    wiring.ask.side_effect = ["first", "second", "quit"]
    wiring.agent.process_query.side_effect = [OracleResponseError("Oracle returned no choices."), "fine"]

    run.main()

    assert wiring.agent.process_query.call_count == 2
    (message,), _ = wiring.halt.call_args
    assert "no choices" in message
    wiring.transport.close.assert_called_once()


def test_interrupt_closes_transport(wiring):
    wiring.ask.side_effect = KeyboardInterrupt

    run.main()

    wiring.halt.assert_not_called()
    wiring.transport.close.assert_called_once()


def test_missing_api_key_exits_before_spawning_host():
    with (
        patch.object(run, "Settings", return_value=_settings(api_key=None)),
        patch.object(run, "StdioTransport") as stdio,
        patch.object(run.display, "halt") as halt,
    ):
        with pytest.raises(SystemExit):
            run.main()

    halt.assert_called_once()
    stdio.assert_not_called()
