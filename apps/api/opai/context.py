from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_UNSET = object()

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
tenant_id_var: ContextVar[str | None] = ContextVar("tenant_id", default=None)
lead_id_var: ContextVar[str | None] = ContextVar("lead_id", default=None)

_LOG_CONTEXT_VARS = {
    "correlation_id": correlation_id_var,
    "tenant_id": tenant_id_var,
    "lead_id": lead_id_var,
}


@contextmanager
def bind_context(
    *,
    correlation_id: object = _UNSET,
    tenant_id: object = _UNSET,
    lead_id: object = _UNSET,
) -> Iterator[None]:
    """Bind request or conversion identifiers for logs, events and spans.

    Only the keywords that are passed are rebound; previous values are restored
    on exit, so nested bindings (request, then a single lead conversion) stack.
    """
    values = {"correlation_id": correlation_id, "tenant_id": tenant_id, "lead_id": lead_id}
    tokens = [
        (_LOG_CONTEXT_VARS[name], _LOG_CONTEXT_VARS[name].set(None if value is None else str(value)))
        for name, value in values.items()
        if value is not _UNSET
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_tenant_id() -> str | None:
    return tenant_id_var.get()


def get_log_context() -> dict[str, str | None]:
    return {name: var.get() for name, var in _LOG_CONTEXT_VARS.items()}
