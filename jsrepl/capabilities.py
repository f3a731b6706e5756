"""Capability injector: the bindings visible to evaluated code.

The capability set is merged in increasing precedence:

1. Host timers and the capturing console (defined by the host prelude)
2. Caller-supplied context (a session's accumulated variables)
3. Per-call ``additional_bindings``

Nothing else is reachable from evaluated code: each evaluation runs in a
fresh QuickJS context that has no filesystem, process or network access
unless a host function granting it is passed in explicitly.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from jsrepl.codec import JSFunction, decode, encode

TIMER_NAMES = (
    "setTimeout",
    "clearTimeout",
    "setInterval",
    "clearInterval",
    "setImmediate",
    "clearImmediate",
    "queueMicrotask",
)

# Host-provided globals the probe never captures
HOST_GLOBALS = frozenset({
    *TIMER_NAMES,
    "console",
    "global",
    "globalThis",
    "structuredClone",
    "atob",
    "btoa",
    "performance",
    "fetch",
    "require",
    "module",
    "exports",
})


@dataclass
class CapabilitySet:
    """Bindings for one evaluation, split by how they cross into the guest.

    Attributes:
        data: Name -> tagged-JSON value, installed as guest globals
        host_functions: Name -> Python callable, exposed through a bridge
        excluded: Names the variable probe must never capture
    """

    data: dict[str, Any] = field(default_factory=dict)
    host_functions: dict[str, Callable[..., Any]] = field(default_factory=dict)
    excluded: frozenset[str] = HOST_GLOBALS

    @property
    def names(self) -> set[str]:
        return {*self.data, *self.host_functions}


def _is_host_function(value: Any) -> bool:
    return callable(value) and not isinstance(value, JSFunction)


def build_capabilities(
    context: Mapping[str, Any] | None = None,
    additional_bindings: Mapping[str, Any] | None = None,
) -> CapabilitySet:
    """Merge context and per-call bindings into a CapabilitySet.

    Later sources override earlier ones on name collision; both override the
    host timers and console.

    Raises:
        TypeError: If a binding has no JavaScript representation
    """
    merged: dict[str, Any] = {}
    for layer in (context or {}, additional_bindings or {}):
        merged.update(layer)

    capabilities = CapabilitySet(
        excluded=HOST_GLOBALS | frozenset(additional_bindings or ())
    )
    for name, value in merged.items():
        if _is_host_function(value):
            capabilities.host_functions[name] = value
        else:
            capabilities.data[name] = encode(value, path=name)
    return capabilities


def host_function_bridge(name: str, fn: Callable[..., Any]) -> Callable[[str], str]:
    """Wrap a Python callable so the guest can call it with JSON-encoded arguments.

    The bridge decodes the arguments, calls ``fn`` and replies with
    ``{"value": ...}`` or, if ``fn`` raised, ``{"error": "..."}``, which the
    guest rethrows as an Error.
    """

    def call(args_json: str) -> str:
        args = [decode(arg) for arg in json.loads(args_json)]
        try:
            result = encode(fn(*args), path=f"{name}()")
        except Exception as exc:
            return json.dumps({"error": f"{type(exc).__name__}: {exc}"})
        return json.dumps({"value": result})

    return call
