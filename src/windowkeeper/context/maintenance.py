"""Model-backed background maintenance: memory flush and history compaction.

Both routines are triggered by estimated history size, not wall-clock
time. Failures are logged and leave state as it was, so the next turn
that crosses the thresholds retries.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from .history import HistoryStore, history_tokens
from .message import Message

logger = logging.getLogger(__name__)

NO_REPLY = "NO_REPLY"

FLUSH_PROMPT = """\
[MEMORY FLUSH - pre-compaction]

This session is approaching its context limit. Save durable memories now.
Use ```update_memory blocks to record what should outlive this conversation:
- New facts about the user
- Important decisions
- Context that must survive a context reset

If there is nothing worth saving, reply with exactly "NO_REPLY".
"""

COMPACTION_PROMPT = """\
[CONTEXT COMPACTION]

Summarize this conversation in 500-1500 words. Keep ALL relevant details:
- Key decisions and agreements
- Tool calls, their results and context
- Preferences the user expressed
- Tasks currently in progress
- Files that were worked on

Conversation to summarize:
{conversation}
"""

SUMMARY_PREFIX = "[Earlier conversation summary]\n"


class SendMessage(Protocol):
    """Model-invocation collaborator."""

    def __call__(self, prompt: str, *, skip_history: bool = False) -> Awaitable[str]:
        ...


UpdateHandler = Callable[[str], Awaitable[None]]


class MemoryFlusher:
    """Asks the model to persist durable facts before history is compacted.

    Runs at most once per compaction cycle; a failed attempt rolls the
    cycle flag back so the next turn tries again.
    """

    def __init__(
        self,
        history: HistoryStore,
        send_message: SendMessage,
        threshold_tokens: int = 50000,
        min_messages: int = 20,
    ) -> None:
        self._history = history
        self._send_message = send_message
        self._threshold_tokens = threshold_tokens
        self._min_messages = min_messages
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def reset(self) -> None:
        """Start a new compaction cycle."""
        self._done = False

    def should_flush(self, history: list[Message]) -> bool:
        if self._done:
            return False
        return (
            history_tokens(history) >= self._threshold_tokens
            and len(history) >= self._min_messages
        )

    async def maybe_run(self, update_handler: UpdateHandler) -> bool:
        """Run the flush if due. Returns True when a flush request completed."""
        history = self._history.get_history()
        if not self.should_flush(history):
            return False

        # Set before awaiting so a concurrent turn does not flush twice
        self._done = True
        logger.info(
            f"Running memory flush ({history_tokens(history)} tokens, "
            f"{len(history)} messages)"
        )

        try:
            response = await self._send_message(FLUSH_PROMPT)
            if response.strip() == NO_REPLY:
                logger.debug("Memory flush: nothing to save")
            else:
                await update_handler(response)
        except Exception as e:
            logger.error(f"Memory flush failed: {e}", exc_info=True)
            self._done = False
            return False
        return True


class HistoryCompactor:
    """Replaces old history with a single model-written summary message."""

    def __init__(
        self,
        history: HistoryStore,
        send_message: SendMessage,
        threshold_tokens: int = 80000,
        min_messages: int = 40,
        keep_recent: int = 20,
        max_message_chars: int = 2000,
        max_transcript_chars: int = 50000,
    ) -> None:
        self._history = history
        self._send_message = send_message
        self._threshold_tokens = threshold_tokens
        self._min_messages = min_messages
        self._keep_recent = keep_recent
        self._max_message_chars = max_message_chars
        self._max_transcript_chars = max_transcript_chars
        self._lock = asyncio.Lock()

    def should_compact(self, history: list[Message]) -> bool:
        return (
            history_tokens(history) >= self._threshold_tokens
            and len(history) >= self._min_messages
        )

    async def maybe_compact(self) -> bool:
        """Compact history if thresholds are crossed. Returns True on mutation."""
        if self._lock.locked():
            logger.debug("Compaction already in progress, skipping")
            return False

        async with self._lock:
            history = self._history.get_history()
            if not self.should_compact(history):
                return False

            older = history[: -self._keep_recent] if self._keep_recent else history
            if len(older) < 5:
                return False

            logger.info(
                f"Summarizing {len(older)} messages "
                f"({history_tokens(history)} tokens total)"
            )

            try:
                transcript = self._transcript(older)
                summary = await self._send_message(
                    COMPACTION_PROMPT.format(conversation=transcript),
                    skip_history=True,
                )
            except Exception as e:
                logger.error(f"Context compaction failed: {e}", exc_info=True)
                return False

            summary = (summary or "").strip()
            if len(summary) <= 50:
                logger.warning(f"Compaction summary too short ({len(summary)} chars), ignoring")
                return False

            # Messages appended while the summary was requested stay in the tail
            self._history.compact(len(older), SUMMARY_PREFIX + summary)
            logger.info(f"Compacted {len(older)} messages -> summary ({len(summary)} chars)")
            return True

    def _transcript(self, messages: list[Message]) -> str:
        speakers = {"user": "User", "assistant": "Assistant"}
        text = "\n---\n".join(
            f"{speakers.get(m.role, 'System')}: {m.content[: self._max_message_chars]}"
            for m in messages
        )
        return text[: self._max_transcript_chars]
