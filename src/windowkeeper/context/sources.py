"""Providers the assembler pulls prompt sections from.

Each provider is an optional callable, sync or async. A provider that is
missing, raises, or returns nothing yields an empty section; no single
source may block a turn.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CronJob:
    """A queued/scheduled job as reported by the scheduler."""

    name: str
    schedule: str
    enabled: bool = True
    action: str = ""


@dataclass
class IndexStats:
    """Document index statistics."""

    total_chunks: int
    total_files: int
    embedding_type: str = "tfidf"  # "openai" or a local fallback


@dataclass
class BackgroundTask:
    """A running background task."""

    id: str
    task: str
    elapsed: float  # seconds


@dataclass
class ActiveHours:
    """Window in which the passive monitor is active (24h clock)."""

    start: int
    end: int


Provider = Callable[..., Any]


@dataclass
class ContextSources:
    """Bundle of text/data providers for one conversation."""

    identity: Optional[Provider] = None
    memory_notes: Optional[Provider] = None  # (key) -> str
    daily_notes: Optional[Provider] = None  # (date_key) -> str
    document: Optional[Provider] = None  # (name) -> str
    onboarding_pending: Optional[Provider] = None
    onboarding: Optional[Provider] = None
    time_context: Optional[Provider] = None
    cron_jobs: Optional[Provider] = None
    index_stats: Optional[Provider] = None
    telemetry_warnings: Optional[Provider] = None
    telemetry_summary: Optional[Provider] = None
    automation_enabled: Optional[Provider] = None
    background_tasks: Optional[Provider] = None
    active_hours: Optional[Provider] = None
    monitor_context: Optional[Provider] = None
    subtask_context: Optional[Provider] = None

    async def fetch(
        self,
        name: str,
        *args: Any,
        default: Any = None,
        expect: Optional[type] = None,
    ) -> Any:
        """Call provider `name`, returning `default` if it is absent or fails.

        A result that is not an instance of `expect` (the type of `default`
        when not given) is treated as a failure too.
        """
        provider = getattr(self, name)
        if provider is None:
            return default
        try:
            result = provider(*args)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Context source '{name}' failed: {e}")
            return default
        if result is None:
            return default
        expected = expect or (type(default) if default is not None else None)
        if expected is not None and not isinstance(result, expected):
            logger.warning(
                f"Context source '{name}' returned {type(result).__name__}, "
                f"expected {expected.__name__}"
            )
            return default
        return result
