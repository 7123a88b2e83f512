# harness.py
# Tool-calling agent loop.
#
# The loop is the kernel. The oracle (an LLM behind a chat-completions API)
# is a passive responder and the capability host is a passive executor;
# this module owns all control flow and the conversation state.
#
# Control flow, per user query:
#   oracle → end?            → return text
#          → tool requests?  → invoke each, in order, through the transport
#                            → append results → oracle again
#   bounded by max_iterations round trips.
#
# All terminal output is delegated to display.py. No formatting here.

import json
from typing import Any, Protocol

from openai import OpenAI

from tool_relay import display
from tool_relay.config import OPENROUTER_BASE_URL
from tool_relay.models import (
    AssistantTurn,
    CapabilityDescriptor,
    Envelope,
    Message,
    OracleResponse,
    StopCondition,
    TextContent,
    ToolInvocationRequest,
    ToolResult,
    ToolResults,
    UserText,
)
from tool_relay.transport import Transport

ITERATION_LIMIT_MESSAGE = "(reached max iterations)"
NO_TEXT_PLACEHOLDER = "(no text response)"
DEFAULT_MAX_ITERATIONS = 10


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class OracleResponseError(Exception):
    """Raised when the oracle's reply cannot be turned into an OracleResponse."""


# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------


def build_system_prompt(catalogue: list[CapabilityDescriptor]) -> str:
    """Instruction text derived from whatever the host advertised."""
    tool_list = "\n".join(f"- {d.name}: {d.description}" for d in catalogue)
    return (
        "You are a helpful assistant with access to these tools:\n"
        f"{tool_list}\n\n"
        "Always prefer the tool designed for a task over a general-purpose one "
        "(for example, a dedicated lookup tool over fetching a URL). "
        "If a tool reports an error, explain it or try a different approach."
    )


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


class Oracle(Protocol):
    def complete(
        self,
        conversation: list[Message],
        catalogue: list[CapabilityDescriptor],
        system_prompt: str,
    ) -> OracleResponse: ...


_FINISH_REASONS = {
    "stop": StopCondition.END,
    "tool_calls": StopCondition.TOOL_REQUESTS,
}


def _to_chat_tools(catalogue: list[CapabilityDescriptor]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.input_schema,
            },
        }
        for d in catalogue
    ]


def _to_chat_messages(conversation: list[Message], system_prompt: str) -> list[dict]:
    """
    Render the conversation in chat-completions form.

    A ToolResults message fans out into one "tool" message per result.
    Error results carry an "ERROR: " prefix so the model can tell them apart.
    """
    messages: list[dict] = [{"role": "system", "content": system_prompt}]
    for message in conversation:
        if isinstance(message, UserText):
            messages.append({"role": "user", "content": message.text})
        elif isinstance(message, AssistantTurn):
            text = "\n".join(s.payload for s in message.segments if isinstance(s, TextContent))
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            requests = message.requests()
            if requests:
                entry["tool_calls"] = [
                    {
                        "id": r.id,
                        "type": "function",
                        "function": {
                            "name": r.name,
                            "arguments": r.raw_arguments
                            if r.raw_arguments is not None
                            else json.dumps(r.arguments),
                        },
                    }
                    for r in requests
                ]
            messages.append(entry)
        elif isinstance(message, ToolResults):
            for result in message.results:
                content = result.joined_text()
                if result.is_error:
                    content = f"ERROR: {content}"
                messages.append({"role": "tool", "tool_call_id": result.id, "content": content})
    return messages


def _to_request(call: Any) -> ToolInvocationRequest:
    """
    Build a request from one chat tool call.

    Argument text that is not a JSON object is kept raw on the request; the
    loop answers it with an error result instead of invoking anything.
    """
    raw = call.function.arguments
    if not raw:
        return ToolInvocationRequest(id=call.id, name=call.function.name)
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        args = None
    if not isinstance(args, dict):
        return ToolInvocationRequest(id=call.id, name=call.function.name, raw_arguments=raw)
    return ToolInvocationRequest(id=call.id, name=call.function.name, arguments=args)


class OpenAIOracle:
    """
    Chat-completions oracle. Defaults to OpenRouter, so any model it serves
    with tool support works.

    Example:
        oracle = OpenAIOracle(model="anthropic/claude-sonnet-4.5", api_key=key)
    """

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str = OPENROUTER_BASE_URL,
        max_tokens: int = 4096,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = OpenAI(base_url=base_url, api_key=api_key)

    @property
    def model(self) -> str:
        return self._model

    def complete(
        self,
        conversation: list[Message],
        catalogue: list[CapabilityDescriptor],
        system_prompt: str,
    ) -> OracleResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": _to_chat_messages(conversation, system_prompt),
        }
        if catalogue:
            request["tools"] = _to_chat_tools(catalogue)

        response = self._client.chat.completions.create(**request)
        if not response.choices:
            raise OracleResponseError("Oracle returned no choices.")
        choice = response.choices[0]

        segments: list[TextContent | ToolInvocationRequest] = []
        if choice.message.content:
            segments.append(TextContent(payload=choice.message.content))
        for call in choice.message.tool_calls or []:
            segments.append(_to_request(call))

        stop = _FINISH_REASONS.get(choice.finish_reason, StopCondition.OTHER)
        if stop is StopCondition.TOOL_REQUESTS and not choice.message.tool_calls:
            stop = StopCondition.OTHER
        return OracleResponse(stop=stop, segments=segments)


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


class AgentLoop:
    """
    Drives one conversation per query between an oracle and a transport.

    The capability catalogue is discovered once, at construction; the system
    prompt is derived from it. After each query the transcript is left on
    `conversation` for inspection.

    Example:
        loop = AgentLoop(oracle, LocalTransport(invoker))
        answer = loop.process_query("What's the weather in London?")
    """

    def __init__(
        self,
        oracle: Oracle,
        transport: Transport,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self._oracle = oracle
        self._transport = transport
        self._max_iterations = max_iterations
        self._catalogue = transport.discover()
        self._system_prompt = build_system_prompt(self._catalogue)
        self.conversation: list[Message] = []

    @property
    def catalogue(self) -> list[CapabilityDescriptor]:
        return list(self._catalogue)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def _dispatch(self, turn: AssistantTurn) -> ToolResults:
        """Invoke every request of `turn`, sequentially, in emitted order."""
        results: list[ToolResult] = []
        for request in turn.requests():
            display.tool_call(request.name, request.arguments)
            if request.raw_arguments is not None:
                envelope = Envelope.error(
                    f"Tool call arguments are not a valid JSON object: {request.raw_arguments[:200]}"
                )
            else:
                envelope = self._transport.invoke(request.name, request.arguments)
            result = ToolResult(id=request.id, content=envelope.content, is_error=envelope.is_error)
            display.tool_result(result)
            results.append(result)
        return ToolResults(results=results)

    def process_query(self, user_text: str) -> str:
        """
        Run the loop for one user query and return the final text.

        Returns a string in all cases except a broken transport: the oracle's
        answer, a placeholder when it said nothing, or the iteration-limit
        message. TransportError propagates to the caller.
        """
        display.prompt_received(user_text)
        conversation: list[Message] = [UserText(text=user_text)]
        self.conversation = conversation

        for iteration in range(self._max_iterations):
            display.calling_oracle(iteration, self._max_iterations)
            response = self._oracle.complete(list(conversation), self._catalogue, self._system_prompt)
            display.oracle_stopped(response.stop, len(response.requests()))

            # END and OTHER both return whatever text came back.
            if response.stop is not StopCondition.TOOL_REQUESTS:
                answer = response.text() or NO_TEXT_PLACEHOLDER
                display.final_result(answer)
                return answer

            turn = AssistantTurn(segments=list(response.segments))
            conversation.append(turn)
            conversation.append(self._dispatch(turn))

        display.iteration_limit(self._max_iterations)
        return ITERATION_LIMIT_MESSAGE
