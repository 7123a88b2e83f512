# transport.py
# Message exchange between the agent loop and the capability invoker.
#
# Wire format: one JSON object per line.
#   request   {"id": 7, "method": "discover" | "invoke", "params": {...}}
#   response  {"id": 7, "result": ..., "error": null}
#             {"id": 7, "result": null, "error": "<message>"}
#
# Two transports share one interface:
#   LocalTransport  routes straight to an in-process invoker
#   StdioTransport  spawns the capability host and talks over its pipes
#
# Any failure to exchange a message raises TransportError. The agent loop
# does not catch it: a broken channel ends the current query.

import contextlib
import json
import queue
import subprocess
import threading
from typing import Any, Protocol, TextIO

from pydantic import BaseModel, Field, ValidationError

from tool_relay.models import CapabilityDescriptor, Envelope
from tool_relay.registry import CapabilityInvoker


class TransportError(Exception):
    """Raised when a request/response exchange with the host fails."""


# ---------------------------------------------------------------------------
# Wire messages
# ---------------------------------------------------------------------------


class WireRequest(BaseModel):
    id: int
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class WireResponse(BaseModel):
    id: int | None = None
    result: Any = None
    error: str | None = None


class InvokeParams(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class Transport(Protocol):
    def discover(self) -> list[CapabilityDescriptor]: ...

    def invoke(self, name: str, arguments: dict[str, Any]) -> Envelope: ...

    def close(self) -> None: ...


class LocalTransport:
    """In-process transport: no framing, direct calls into the invoker."""

    def __init__(self, invoker: CapabilityInvoker) -> None:
        self._invoker = invoker

    def discover(self) -> list[CapabilityDescriptor]:
        return self._invoker.discover()

    def invoke(self, name: str, arguments: dict[str, Any]) -> Envelope:
        return self._invoker.invoke(name, arguments)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Host side
# ---------------------------------------------------------------------------


def handle_request(invoker: CapabilityInvoker, line: str) -> WireResponse:
    """Decode one request line and produce its response. Never raises."""
    try:
        request = WireRequest.model_validate_json(line)
    except ValidationError as exc:
        return WireResponse(error=f"Malformed request: {exc.errors()[0]['msg']}")

    if request.method == "discover":
        capabilities = [d.model_dump(by_alias=True) for d in invoker.discover()]
        return WireResponse(id=request.id, result={"capabilities": capabilities})

    if request.method == "invoke":
        try:
            params = InvokeParams.model_validate(request.params)
        except ValidationError as exc:
            return WireResponse(id=request.id, error=f"Invalid invoke params: {exc.errors()[0]['msg']}")
        envelope = invoker.invoke(params.name, params.arguments)
        return WireResponse(id=request.id, result=envelope.model_dump(by_alias=True))

    return WireResponse(id=request.id, error=f"Unknown method: {request.method!r}")


def serve(invoker: CapabilityInvoker, reader: TextIO, writer: TextIO) -> None:
    """Answer requests line by line until the reader hits EOF."""
    for line in reader:
        line = line.strip()
        if not line:
            continue
        response = handle_request(invoker, line)
        writer.write(response.model_dump_json() + "\n")
        writer.flush()


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class StdioTransport:
    """
    Talks to a capability host running as a child process.

    Requests are written to the child's stdin; a reader thread queues lines
    from its stdout so every request can wait with a timeout. The child's
    stderr is inherited and carries its operational log.

    Example:
        with StdioTransport([sys.executable, "-m", "tool_relay.host"]) as transport:
            catalogue = transport.discover()
    """

    def __init__(
        self,
        command: list[str],
        timeout: float | None = 60.0,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        self._timeout = timeout
        self._next_id = 0
        try:
            self._process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                bufsize=1,
                env=env,
                cwd=cwd,
            )
        except OSError as exc:
            raise TransportError(f"Failed to start capability host: {exc}") from exc

        self._lines: queue.Queue[str | None] = queue.Queue()
        self._reader = threading.Thread(target=self._pump, daemon=True)
        self._reader.start()

    def _pump(self) -> None:
        for line in self._process.stdout:
            self._lines.put(line)
        self._lines.put(None)

    def _request(self, method: str, params: dict[str, Any]) -> Any:
        self._next_id += 1
        request = WireRequest(id=self._next_id, method=method, params=params)

        try:
            self._process.stdin.write(request.model_dump_json() + "\n")
            self._process.stdin.flush()
        except (OSError, ValueError) as exc:
            raise TransportError(f"Failed to send {method!r} request: {exc}") from exc

        while True:
            try:
                line = self._lines.get(timeout=self._timeout)
            except queue.Empty as exc:
                raise TransportError(f"No response to {method!r} within {self._timeout:g}s") from exc

            if line is None:
                # Keep EOF visible to later requests.
                self._lines.put(None)
                raise TransportError("Capability host closed the connection.")

            try:
                response = WireResponse.model_validate_json(line)
            except ValidationError as exc:
                raise TransportError(f"Malformed response to {method!r}: {line.strip()[:200]}") from exc

            # Late reply to a request that already timed out.
            if response.id is not None and response.id < request.id:
                continue
            break

        if response.id != request.id:
            raise TransportError(f"Response id {response.id} does not match request id {request.id}.")
        if response.error is not None:
            raise TransportError(f"Host rejected {method!r}: {response.error}")
        return response.result

    def discover(self) -> list[CapabilityDescriptor]:
        result = self._request("discover", {})
        try:
            return [CapabilityDescriptor.model_validate(c) for c in result["capabilities"]]
        except (KeyError, TypeError, ValidationError) as exc:
            raise TransportError(f"Malformed capability list: {exc}") from exc

    def invoke(self, name: str, arguments: dict[str, Any]) -> Envelope:
        result = self._request("invoke", {"name": name, "arguments": arguments})
        try:
            return Envelope.model_validate(result)
        except ValidationError as exc:
            raise TransportError(f"Malformed envelope from {name!r}: {json.dumps(result)[:200]}") from exc

    def close(self) -> None:
        if self._process.stdin and not self._process.stdin.closed:
            # A host that already exited leaves unflushed bytes behind.
            with contextlib.suppress(BrokenPipeError):
                self._process.stdin.close()
        try:
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()

    def __enter__(self) -> "StdioTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
