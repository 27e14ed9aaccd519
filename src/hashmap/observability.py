"""OpenTelemetry tracing configuration for the hashmap overlay.

HashmapFs operations are wrapped by hashmap.tracing.traced_operation, which
emits one "hashmap.<operation>" span per call while tracing is enabled. This
module installs the provider those spans go to. The hashmap CLI calls
configure_tracing() before opening an overlay; applications embedding
HashmapFs call it once at startup. Spans are printed to the console, or kept
in memory so tests can assert on them.

Environment Variables:
    HASHMAP_OTEL_ENABLED: Set to "1" to emit overlay spans (default: disabled)
    HASHMAP_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    HASHMAP_OTEL_SERVICE_NAME: service.name of the spans (default: "hashmap")
    HASHMAP_OTEL_RESOURCE_ATTRS: Comma-separated k=v pairs, e.g. "store=nas01"
    HASHMAP_OTEL_TEST_CAPTURE: Set to "1" to capture spans in memory

Span attributes never carry logical paths or storage keys in clear; only
their SHA-256 digests are recorded.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

ENV_OTEL_ENABLED: Final[str] = "HASHMAP_OTEL_ENABLED"
ENV_REQUIRE_OTEL: Final[str] = "HASHMAP_REQUIRE_OTEL"
ENV_OTEL_SERVICE_NAME: Final[str] = "HASHMAP_OTEL_SERVICE_NAME"
ENV_OTEL_RESOURCE_ATTRS: Final[str] = "HASHMAP_OTEL_RESOURCE_ATTRS"
ENV_OTEL_TEST_CAPTURE: Final[str] = "HASHMAP_OTEL_TEST_CAPTURE"

DEFAULT_SERVICE_NAME: Final[str] = "hashmap"

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when the span provider cannot be installed and HASHMAP_REQUIRE_OTEL=1."""

    pass


def get_env_bool(key: str, default: bool = False) -> bool:
    """Read a "1"/"true"/"yes" flag from the environment."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    return default


def _get_env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _parse_resource_attrs(attrs_str: str) -> dict[str, str]:
    """Parse comma-separated k=v resource attributes."""
    result: dict[str, str] = {}
    if not attrs_str:
        return result
    for pair in attrs_str.split(","):
        pair = pair.strip()
        if "=" in pair:
            k, v = pair.split("=", 1)
            result[k.strip()] = v.strip()
    return result


def is_tracing_enabled() -> bool:
    """Return True if overlay operations should emit spans."""
    return get_env_bool(ENV_OTEL_ENABLED, False)


def configure_tracing() -> bool:
    """Install the span provider for overlay operations.

    Idempotent: the CLI and tests may call it repeatedly. The in-memory
    exporter is chosen when HASHMAP_OTEL_TEST_CAPTURE=1, the console exporter
    otherwise.

    Returns:
        True if overlay spans will be exported, False if tracing is disabled
        or could not be set up.

    Raises:
        TracingConfigError: If HASHMAP_REQUIRE_OTEL=1 and setup fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    require_otel = get_env_bool(ENV_REQUIRE_OTEL, False)
    test_capture = get_env_bool(ENV_OTEL_TEST_CAPTURE, False)

    if not is_tracing_enabled():
        _is_configured = True
        logger.debug("Hashmap tracing disabled (%s not set)", ENV_OTEL_ENABLED)
        return False

    # The global provider can only be set once per process.
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        service_name = _get_env_str(ENV_OTEL_SERVICE_NAME, DEFAULT_SERVICE_NAME)
        resource_attrs = {"service.name": service_name}
        resource_attrs.update(_parse_resource_attrs(_get_env_str(ENV_OTEL_RESOURCE_ATTRS)))
        provider = TracerProvider(resource=Resource.create(resource_attrs))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        else:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "Hashmap tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else "console",
        )
        return True

    except Exception as e:
        logger.error("Failed to configure hashmap tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"Hashmap tracing required but configuration failed: {e}"
            ) from e
        return False


def get_test_spans() -> list[ReadableSpan]:
    """Return the overlay spans captured so far.

    Returns:
        Finished spans if HASHMAP_OTEL_TEST_CAPTURE=1 was set when tracing
        was configured, else an empty list.
    """
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    """Drop the captured overlay spans."""
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Let the next configure_tracing() call re-read the environment.

    The TracerProvider cannot be replaced once set, so the in-memory exporter
    is kept and only its spans are cleared.
    """
    global _is_configured

    clear_test_spans()
    _is_configured = False
