"""
Structured logging for the dealbot pipeline.

structlog is configured once at import (console renderer) and again by the
process entry point (JSON in production). Every event carries the batch,
deal and provider it belongs to: ``logging_context()`` pushes those ids into
a ContextVar, so concurrent deals in one batch never see each other's ids.
"""

import logging
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from .config import config

# Ids attached to every event, in output order
CONTEXT_KEYS = ('batch_id', 'deal_id', 'provider_address')

_EMPTY: Mapping[str, str] = MappingProxyType({})
_log_context: ContextVar[Mapping[str, str]] = ContextVar('dealbot_log_context', default=_EMPTY)


def current_context() -> Mapping[str, str]:
    """Read-only view of the ids bound in the current task."""
    return _log_context.get()


def get_deal_id() -> str | None:
    return current_context().get('deal_id')


def get_provider_address() -> str | None:
    return current_context().get('provider_address')


def get_batch_id() -> str | None:
    return current_context().get('batch_id')


@contextmanager
def logging_context(
    deal_id: str | None = None,
    provider_address: str | None = None,
    batch_id: str | None = None,
) -> Iterator[None]:
    """
    Bind pipeline ids for the duration of the block.

    Ids given as None keep the enclosing value, so a deal-level context
    nested in a batch-level one logs both. The previous context is restored
    on exit, even when the block raises.

    Usage:
        with logging_context(batch_id=batch_id):
            with logging_context(deal_id=str(deal.id), provider_address=address):
                logger.info('deal.created')  # batch_id, deal_id, provider_address
    """
    updates = {
        'batch_id': batch_id,
        'deal_id': deal_id,
        'provider_address': provider_address,
    }
    merged = dict(_log_context.get())
    merged.update({key: value for key, value in updates.items() if value is not None})

    token = _log_context.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _log_context.reset(token)


def add_context_info(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor: copy bound pipeline ids into the event."""
    context = _log_context.get()
    for key in CONTEXT_KEYS:
        if key in context:
            event_dict[key] = context[key]
    return event_dict


def _build_processors(json_output: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(json_output: bool = False, log_level: str | None = None) -> None:
    """
    Configure structlog for the process.

    Args:
        json_output: JSON lines (production) instead of the console renderer
        log_level: Level name; defaults to config.LOG_LEVEL
    """
    level = logging.getLevelName((log_level or config.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level)

    structlog.configure(
        processors=_build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for a module; pass __name__."""
    return structlog.get_logger(name)


class PipelineTimer:
    """
    Wall-clock durations of named stages, for completion log lines.

    Usage:
        timer = PipelineTimer()
        with timer.stage('preprocess'):
            ...
        logger.info('batch.complete', **timer.summary())
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.start_time = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the block; the duration is recorded even if it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - started) * 1000)

    def record(self, name: str, duration_ms: float) -> None:
        self.stages[name] = duration_ms

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {name: round(ms, 2) for name, ms in self.stages.items()},
        }


# Development defaults until the entry point reconfigures
configure_logging(json_output=False)
