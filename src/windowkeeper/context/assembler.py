"""Tiered prompt assembly with a cache-stable / per-turn dynamic split.

Tiers:
  1. Identity   - persona notes, relevant long-term memory, today's notes
  2. Safety     - reasoning and guardrail instructions
  3. Capability - capability and resourcefulness docs (mode-gated)
  4. Tools      - tool-format instructions (mode-gated)
  Dynamic       - time, jobs, index, telemetry, tasks, nudges (rebuilt every turn)

Tiers 1-4 form the stable part and are cached for a short TTL so the
model provider can reuse its prompt cache; the dynamic part never is.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from .history import HistoryStore
from .maintenance import HistoryCompactor, MemoryFlusher, SendMessage, UpdateHandler
from .memory_filter import MEMORY_CHAR_BUDGET, select_relevant_memory
from .message import ContextWindow, Message
from .models import get_model_context_limit
from .modes import INTERACTIVE_MODES, ModuleTable, OperatingMode, resolve_modules
from .sources import ActiveHours, BackgroundTask, ContextSources, CronJob, IndexStats
from .window import WindowBuilder, estimate_tokens

logger = logging.getLogger(__name__)

MEMORY_KEY = "MEMORY.md"
EMPTY_MEMORY_MARKERS = ("(Filled in automatically", "(Current observations")
EMPTY_MEMORY_CHARS = 200

AUTOMATION_NOTICE = """\
## Desktop Automation
You can take over the user's desktop (mouse + keyboard) in autonomous mode.
To do so you MUST use a ```take_control block.
Do NOT drive the computer with mouse/keyboard tools in normal chat; they only work in take_control mode."""


@dataclass(frozen=True)
class StructuredContext:
    """Instructional context for one turn."""

    stable: str
    dynamic: str
    full: str
    estimated_tokens: int


@dataclass
class _StableEntry:
    key: int
    content_hash: int
    text: str
    built_at: float


def rolling_hash(text: str) -> int:
    """Simple 32-bit polynomial hash; only used as a cache key."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def _section(title: str, body: str) -> str:
    return f"## {title}\n{body.strip()}"


class TieredAssembler:
    """Builds the structured system context for each turn.

    One instance per conversation. Holds the stable-part cache, the
    memory-flush cycle flag and the session token counter.
    """

    def __init__(
        self,
        sources: ContextSources,
        model: str = "claude-sonnet-4-20250514",
        history: Optional[HistoryStore] = None,
        send_message: Optional[SendMessage] = None,
        window: Optional[WindowBuilder] = None,
        cache_ttl: float = 30.0,
        memory_char_budget: int = MEMORY_CHAR_BUDGET,
        warn_ratio: float = 0.25,
        flusher: Optional[MemoryFlusher] = None,
        compactor: Optional[HistoryCompactor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources = sources
        self._model = model
        self._window = window or WindowBuilder()
        self._cache_ttl = cache_ttl
        self._memory_char_budget = memory_char_budget
        self._warn_ratio = warn_ratio
        self._clock = clock

        self._stable_cache: Optional[_StableEntry] = None
        self._session_tokens = 0
        self._maintenance_task: Optional[asyncio.Task] = None

        if history is not None and send_message is not None:
            flusher = flusher or MemoryFlusher(history, send_message)
            compactor = compactor or HistoryCompactor(history, send_message)
        self._flusher = flusher
        self._compactor = compactor

    @property
    def window(self) -> WindowBuilder:
        return self._window

    @property
    def model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        """Switch target model; the window budget follows it."""
        self._model = model
        self._window.configure_for_model(model)

    # --- Session state ---

    def reset_session(self) -> None:
        """Reset per-session state (call when conversation history is cleared)."""
        if self._flusher:
            self._flusher.reset()
        self._session_tokens = 0
        self.invalidate_stable_cache()

    def add_tokens(self, count: int) -> None:
        self._session_tokens += count

    @property
    def token_usage(self) -> int:
        return self._session_tokens

    @property
    def stable_hash(self) -> Optional[int]:
        """Content hash of the cached stable part, or None when nothing is cached."""
        return self._stable_cache.content_hash if self._stable_cache else None

    def invalidate_stable_cache(self) -> None:
        """Force the next build to reassemble the stable part."""
        if self._stable_cache is not None:
            logger.debug("Stable context cache invalidated")
        self._stable_cache = None

    # --- Assembly ---

    async def build_structured_context(
        self,
        mode: Union[str, OperatingMode, None] = None,
        intent: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> StructuredContext:
        """Assemble stable + dynamic context for the given operating mode."""
        resolved = OperatingMode.parse(mode)
        modules = resolve_modules(resolved, intent)

        stable = await self._get_stable(resolved, modules, user_message)
        dynamic = await self.build_dynamic(modules)
        full = stable + "\n\n" + dynamic if dynamic else stable
        tokens = estimate_tokens(full)

        limit = get_model_context_limit(self._model)
        if tokens > limit * self._warn_ratio:
            logger.warning(
                f"System context is {tokens} tokens, over "
                f"{int(self._warn_ratio * 100)}% of {self._model}'s {limit}-token window"
            )

        return StructuredContext(stable=stable, dynamic=dynamic, full=full, estimated_tokens=tokens)

    async def compose(
        self,
        history: list[Message],
        mode: Union[str, OperatingMode, None] = None,
        intent: Optional[str] = None,
        pinned: Optional[set[str]] = None,
    ) -> tuple[StructuredContext, ContextWindow]:
        """Build the system context and the message window that fits beside it."""
        user_message = next((m.content for m in reversed(history) if m.role == "user"), None)
        context = await self.build_structured_context(mode, intent, user_message)
        window = self._window.build_context_window(
            history, pinned=pinned, system_prompt_tokens=context.estimated_tokens
        )
        return context, window

    async def _get_stable(
        self,
        mode: OperatingMode,
        modules: ModuleTable,
        user_message: Optional[str],
    ) -> str:
        key = rolling_hash(mode.value + "|" + ",".join(modules.disabled()))
        now = self._clock()
        entry = self._stable_cache
        if entry is not None and entry.key == key and now - entry.built_at < self._cache_ttl:
            return entry.text

        text = await self.build_stable(mode, modules, user_message)
        self._stable_cache = _StableEntry(
            key=key, content_hash=rolling_hash(text), text=text, built_at=now
        )
        logger.debug(f"Stable context rebuilt ({len(text)} chars, mode={mode.value})")
        return text

    async def build_stable(
        self,
        mode: OperatingMode,
        modules: ModuleTable,
        user_message: Optional[str] = None,
    ) -> str:
        fetch = self._sources.fetch
        parts: list[str] = []

        # Tier 1: identity
        identity = await fetch("identity", default="")
        memory = await fetch("memory_notes", MEMORY_KEY, default="")
        memory = select_relevant_memory(memory, user_message, budget=self._memory_char_budget)
        daily = ""
        if modules.daily_notes and mode in INTERACTIVE_MODES:
            date_key = f"memory/{datetime.now():%Y-%m-%d}.md"
            daily = await fetch("daily_notes", date_key, default="")

        tier1 = ["# System Context"]
        if identity.strip():
            tier1.append(identity.strip())
        if memory.strip():
            tier1.append(_section("Long-Term Memory", memory))
        if daily.strip():
            tier1.append(_section("Today's Notes", daily))
        parts.append("\n\n".join(tier1))

        # Tier 2: reasoning & safety
        parts.append(await fetch("document", "REASONING.md", default=""))
        parts.append(await fetch("document", "GUARDRAILS.md", default=""))

        # Tier 3: capabilities
        if modules.capabilities:
            parts.append(await fetch("document", "AGENTS.md", default=""))
        if modules.resourcefulness:
            parts.append(await fetch("document", "RESOURCEFUL.md", default=""))

        # Tier 4: tools
        if modules.tool_instructions:
            parts.append(await fetch("document", "TOOLS.md", default=""))

        return "\n\n".join(p.strip() for p in parts if p and p.strip())

    async def build_dynamic(self, modules: ModuleTable) -> str:
        fetch = self._sources.fetch
        sections: list[str] = []

        time_ctx = await fetch("time_context", default="")
        if time_ctx.strip():
            sections.append(time_ctx.strip())

        if modules.onboarding and await fetch("onboarding_pending", default=False):
            ritual = await fetch("onboarding", default="")
            if ritual.strip():
                sections.append(
                    _section("Onboarding - First Run", ritual)
                    + "\n\nIMPORTANT: This is your FIRST run. Follow the onboarding ritual above."
                    + '\nWhen the ritual is finished, end your message with "ONBOARDING_COMPLETE".'
                )

        cron_jobs: list[CronJob] = [
            j for j in await fetch("cron_jobs", default=[]) if isinstance(j, CronJob)
        ]
        if modules.cron and cron_jobs:
            lines = [
                f"- [{'x' if j.enabled else ' '}] \"{j.name}\" - {j.schedule} - {j.action[:80]}"
                for j in cron_jobs
            ]
            sections.append(_section("Cron Jobs", "\n".join(lines)))

        if modules.index:
            stats: Optional[IndexStats] = await fetch("index_stats", expect=IndexStats)
            if stats:
                embeddings = "OpenAI" if stats.embedding_type == "openai" else "TF-IDF fallback"
                sections.append(_section(
                    "Document Index",
                    f"Indexed: {stats.total_chunks} chunks from {stats.total_files} files"
                    f" | Embeddings: {embeddings}",
                ))

        if modules.automation and await fetch("automation_enabled", default=False):
            sections.append(AUTOMATION_NOTICE)

        if modules.monitoring:
            monitor = await fetch("monitor_context", default="")
            if monitor.strip():
                sections.append(monitor.strip())

        if modules.subtasks:
            subtasks = await fetch("subtask_context", default="")
            if subtasks.strip():
                sections.append(subtasks.strip())

        if modules.background_tasks:
            tasks: list[BackgroundTask] = [
                t for t in await fetch("background_tasks", default=[])
                if isinstance(t, BackgroundTask)
            ]
            if tasks:
                lines = [f"- [{t.id}] \"{t.task[:80]}\" - running {round(t.elapsed)}s" for t in tasks]
                sections.append(_section("Background Tasks", "\n".join(lines)))

        if modules.active_hours:
            hours: Optional[ActiveHours] = await fetch("active_hours", expect=ActiveHours)
            if hours:
                sections.append(_section(
                    "Active Hours", f"Heartbeat active: {hours.start}:00-{hours.end}:00"
                ))

        if modules.health:
            warnings: list[str] = await fetch("telemetry_warnings", default=[])
            if warnings:
                sections.append(_section("System Warnings", "\n".join(str(w) for w in warnings)))
            status = await fetch("telemetry_summary", default="")
            if status.strip():
                sections.append(_section("System Status", status))

        if modules.nudges:
            nudge = await self._build_nudge(cron_jobs)
            if nudge:
                sections.append(nudge)

        return "\n\n".join(sections)

    async def _build_nudge(self, cron_jobs: list[CronJob]) -> str:
        memory = await self._sources.fetch("memory_notes", MEMORY_KEY, default="")
        memory_empty = (
            any(marker in memory for marker in EMPTY_MEMORY_MARKERS)
            or len(memory.strip()) < EMPTY_MEMORY_CHARS
        )
        nudges = []
        if memory_empty:
            nudges.append(
                "MEMORY.md is EMPTY! Record observations about the user after "
                "each conversation with ```update_memory blocks."
            )
        if not cron_jobs:
            nudges.append(
                "You have no cron jobs! Suggest useful recurring tasks (morning "
                "briefing, break reminder, end-of-day summary) with ```cron blocks."
            )
        if not nudges:
            return ""
        return _section("Reminder", "\n".join(nudges))

    # --- Maintenance ---

    async def maybe_run_memory_flush(self, update_handler: UpdateHandler) -> bool:
        if self._flusher is None:
            return False
        return await self._flusher.maybe_run(update_handler)

    async def maybe_compact_context(self) -> bool:
        if self._compactor is None:
            return False
        compacted = await self._compactor.maybe_compact()
        if compacted and self._flusher:
            # History shrank: a new compaction cycle begins
            self._flusher.reset()
        return compacted

    async def run_maintenance(self, update_handler: UpdateHandler) -> None:
        """Flush first so memory is saved before history is summarized away."""
        await self.maybe_run_memory_flush(update_handler)
        await self.maybe_compact_context()

    def schedule_maintenance(self, update_handler: UpdateHandler) -> Optional[asyncio.Task]:
        """Fire-and-forget maintenance after a turn. Returns the task or None."""
        if self._flusher is None and self._compactor is None:
            return None
        if self._maintenance_task is not None and not self._maintenance_task.done():
            logger.debug("Maintenance already running, skipping")
            return None
        task = asyncio.create_task(self.run_maintenance(update_handler))
        task.add_done_callback(self._maintenance_done)
        self._maintenance_task = task
        return task

    @staticmethod
    def _maintenance_done(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Maintenance task cancelled")
            return
        exc = task.exception()
        if exc:
            logger.error(f"Maintenance task failed: {exc}", exc_info=exc)
