# registry.py
# Capability registry and invoker.
#
# The registry maps a capability name to its descriptor, its pydantic
# argument model and its handler. It is filled once at startup and only read
# afterwards. The invoker is the error boundary: whatever happens inside a
# handler, invoke() returns an Envelope and never raises.

import json
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from tool_relay import display
from tool_relay.models import CapabilityDescriptor, Envelope, TextContent

Handler = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CapabilityError(Exception):
    """Raised by a handler when its backend cannot satisfy the request."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _strip_titles(schema: Any) -> Any:
    """Drop pydantic's auto-generated "title" keys; the oracle doesn't need them."""
    if isinstance(schema, dict):
        return {
            key: _strip_titles(value)
            for key, value in schema.items()
            if not (key == "title" and isinstance(value, str))
        }
    if isinstance(schema, list):
        return [_strip_titles(item) for item in schema]
    return schema


@dataclass(frozen=True)
class Capability:
    descriptor: CapabilityDescriptor
    args_model: type[BaseModel]
    handler: Handler


class CapabilityRegistry:
    """
    Static name → capability mapping.

    Registering a name twice replaces the earlier entry (last one wins).
    Registration happens once, from code, so collisions are a wiring choice
    rather than an input error.
    """

    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}

    def register(
        self,
        name: str,
        description: str,
        args_model: type[BaseModel],
        handler: Handler,
    ) -> CapabilityDescriptor:
        descriptor = CapabilityDescriptor(
            name=name,
            description=description,
            input_schema=_strip_titles(args_model.model_json_schema()),
        )
        self._capabilities[name] = Capability(descriptor, args_model, handler)
        return descriptor

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def descriptors(self) -> list[CapabilityDescriptor]:
        """Catalogue view, in registration order."""
        return [c.descriptor for c in self._capabilities.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


def _format_validation_error(name: str, exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "(arguments)"
        problems.append(f"{field}: {error['msg']}")
    return f"Invalid arguments for '{name}': " + "; ".join(problems)


def _wrap(result: Any) -> Envelope:
    if isinstance(result, Envelope):
        return result
    if isinstance(result, str):
        return Envelope.text(result)
    if isinstance(result, BaseModel):
        return Envelope.text(result.model_dump_json(indent=2))
    return Envelope(content=[TextContent(payload=json.dumps(result, indent=2, default=str))])


class CapabilityInvoker:
    """Validates, runs and wraps capability calls. Never propagates an exception."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    def discover(self) -> list[CapabilityDescriptor]:
        return self._registry.descriptors()

    def invoke(self, name: str, raw_args: Any) -> Envelope:
        display.invocation_start(name, raw_args)
        envelope = self._invoke(name, raw_args)
        display.invocation_done(name, envelope)
        return envelope

    def _invoke(self, name: str, raw_args: Any) -> Envelope:
        capability = self._registry.get(name)
        if capability is None:
            return Envelope.error(f"Unknown capability: '{name}'")

        try:
            args = capability.args_model.model_validate(raw_args if raw_args is not None else {})
        except ValidationError as exc:
            return Envelope.error(_format_validation_error(name, exc))

        try:
            result = capability.handler(args)
        except Exception as exc:
            return Envelope.error(str(exc) or exc.__class__.__name__)

        try:
            return _wrap(result)
        except (TypeError, ValueError) as exc:
            return Envelope.error(f"Unserializable result from '{name}': {exc}")
