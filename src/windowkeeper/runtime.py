"""Per-conversation wiring of history, window builder and assembler."""

import asyncio
import logging
from dataclasses import replace
from typing import Optional, Union

from .config import Config
from .context import (
    ContextSources,
    ContextWindow,
    HistoryCompactor,
    InMemoryHistory,
    MemoryFlusher,
    OperatingMode,
    StructuredContext,
    TieredAssembler,
    WindowBuilder,
    resolve_modules,
)
from .context.maintenance import SendMessage, UpdateHandler
from .logging import begin_turn

logger = logging.getLogger(__name__)


class ConversationContext:
    """Owns every piece of per-conversation context state.

    Construct one per conversation; nothing here is shared between
    instances.
    """

    def __init__(
        self,
        config: Config,
        sources: Optional[ContextSources] = None,
        history: Optional[InMemoryHistory] = None,
        send_message: Optional[SendMessage] = None,
    ) -> None:
        self._config = config
        self.history = history if history is not None else InMemoryHistory()
        self.window = WindowBuilder(replace(config.budget))
        if config.llm.auto_budget:
            self.window.configure_for_model(config.llm.model)

        flusher = compactor = None
        if send_message is not None:
            m = config.maintenance
            flusher = MemoryFlusher(
                self.history,
                send_message,
                threshold_tokens=m.flush_threshold_tokens,
                min_messages=m.flush_min_messages,
            )
            compactor = HistoryCompactor(
                self.history,
                send_message,
                threshold_tokens=m.compact_threshold_tokens,
                min_messages=m.compact_min_messages,
                keep_recent=m.compact_keep_recent,
            )

        self.assembler = TieredAssembler(
            sources or ContextSources(),
            model=config.llm.model,
            window=self.window,
            cache_ttl=config.assembler.stable_cache_ttl,
            memory_char_budget=config.assembler.memory_char_budget,
            warn_ratio=config.assembler.warn_ratio,
            flusher=flusher,
            compactor=compactor,
        )

    async def prepare_turn(
        self,
        mode: Union[str, OperatingMode, None] = None,
        intent: Optional[str] = None,
    ) -> tuple[StructuredContext, ContextWindow]:
        """Build the system context and message window for the next model call."""
        resolved = OperatingMode.parse(mode)
        turn = begin_turn(resolved)
        context, window = await self.assembler.compose(
            self.history.get_history(), mode=resolved, intent=intent
        )
        logger.info(
            f"Turn {turn} context: {context.estimated_tokens} system tokens, "
            f"{len(window.messages)} messages ({window.total_tokens} tokens), "
            f"{window.dropped_count} dropped",
            extra={"ctx": {
                "message_ids": window.message_ids,
                "pinned_overflow": window.pinned_overflow,
                "disabled": resolve_modules(resolved, intent).disabled(),
            }},
        )
        return context, window

    def finish_turn(self, update_handler: UpdateHandler) -> Optional[asyncio.Task]:
        """Check maintenance thresholds after a turn (fire-and-forget)."""
        return self.assembler.schedule_maintenance(update_handler)

    def reset(self) -> None:
        """Hard reset: clear history and all session state."""
        self.history.clear()
        self.assembler.reset_session()
        logger.debug("Conversation context reset")
