"""Tracing decorator for overlay operations.

Security:
    - Never export logical paths or storage keys in clear
    - Only SHA-256 digests and safe identifiers in attributes
"""

from __future__ import annotations

import functools
import hashlib
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from hashmap.observability import is_tracing_enabled

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def traced_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace overlay operations with OpenTelemetry.

    The first positional argument after self is taken as the operation
    target (a path, or an object whose str() is its path).

    Args:
        operation: Operation name (e.g., "put", "mkdir", "dir_move").

    Returns:
        Decorated function that emits "hashmap.<operation>" spans when
        tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not is_tracing_enabled():
                return func(self, *args, **kwargs)

            from opentelemetry import trace

            tracer = trace.get_tracer("hashmap.fs")
            with tracer.start_as_current_span(f"hashmap.{operation}") as span:
                target = str(args[0]) if args else ""
                span.set_attribute(
                    "hashmap.path_sha256", hashlib.sha256(target.encode("utf-8")).hexdigest()
                )
                span.set_attribute("hashmap.hash_type", str(getattr(self, "hash_type", "")))
                store = getattr(self, "store", None)
                span.set_attribute("storage.backend", getattr(store, "backend_name", "unknown"))

                try:
                    result = func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add size or entry count of the result to span."""
    if isinstance(result, list):
        span.set_attribute("hashmap.entry_count", len(result))
        return
    size = getattr(result, "size", None)
    if isinstance(size, int):
        span.set_attribute("hashmap.object_size_bytes", size)
