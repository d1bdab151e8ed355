"""Logfire tracing for circulation operations."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import logfire

from .config import ServerConfig, get_config

logger = logging.getLogger(__name__)


class _ObservabilityState:
    configured: bool = False
    enabled: bool = True


def initialize_observability(config: ServerConfig | None = None) -> None:
    """Configure Logfire from server settings.

    Spans are only shipped when a token is configured; otherwise they stay
    in-process, which is what tests and local development want.
    """
    config = config or get_config()
    _ObservabilityState.enabled = config.logfire_enabled

    if not config.logfire_enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=config.logfire_token,
        service_name=config.server_name,
        service_version=config.server_version,
        environment=config.environment,
        send_to_logfire="if-token-present",
        console=False,
    )
    _ObservabilityState.configured = True
    logger.info("Logfire tracing configured for %s", config.environment)


@contextmanager
def trace_ledger_operation(operation: str, **attributes) -> Generator[Any, None, None]:
    """Wrap a circulation operation in a Logfire span.

    The span records ``ledger.outcome`` and, on failure, the error kind the
    caller will see. Exceptions always propagate.
    """
    if not _ObservabilityState.enabled:
        yield None
        return

    with logfire.span(
        "ledger.{operation}",
        operation=operation,
        **{f"ledger.{key}": value for key, value in attributes.items()},
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("ledger.outcome", "error")
            span.set_attribute("ledger.error_kind", getattr(e, "kind", type(e).__name__))
            span.set_attribute("ledger.error_message", str(e))
            raise
        span.set_attribute("ledger.outcome", "success")
