"""Per-turn admission of conversation history under a token budget.

Instead of naively taking the last N messages, the builder:
  1. Estimates the token cost of every message
  2. Scores importance (tool results, decisions, errors vs. small talk)
  3. Always keeps the most recent messages and every pinned message
  4. Greedily fills the remaining budget with the highest-scoring messages
  5. Condenses what was dropped into a short heuristic summary
"""

import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .message import ContextWindow, Message, ScoredMessage
from .models import get_model_context_limit

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5

# Keyword patterns that indicate high-importance messages
HIGH_IMPORTANCE_PATTERNS = [
    re.compile(r"(?:remember|important|crucial|key point|decid|decision|agreed)", re.IGNORECASE),
    re.compile(r"(?:don't|do not|never|always|must)", re.IGNORECASE),
    re.compile(r"(?:error|bug|crash|fix|fail)", re.IGNORECASE),
    re.compile(r"(?:password|api.?key|secret|token|credential)", re.IGNORECASE),
    re.compile(r"(?:deadline|due date|until|before)", re.IGNORECASE),
    re.compile(r"(?:architecture|design|pattern|convention)", re.IGNORECASE),
]

TOOL_RESULT_PATTERN = re.compile(r'^Tool result "[^"]*":')
TOOL_CALL_PATTERN = re.compile(r"```tool\n")
CRON_PATTERN = re.compile(r"```cron\n")
QUESTION_PATTERN = re.compile(r"[^.!?\n]*\?")

MAX_SUMMARY_POINTS = 10

LARGE_WINDOW_TOKENS = 100000


def estimate_tokens(text: Optional[str]) -> int:
    """Fast token estimate (~3.5 chars per token for mixed-language text)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class BudgetConfig:
    """Token budget for the conversation window."""

    max_context_tokens: int = 80000
    reserve_for_response: int = 8192
    summary_threshold: int = 30  # summarize drops only above this many messages
    importance_decay_rate: float = 0.02
    min_messages_to_keep: int = 4


class WindowBuilder:
    """Selects the subset of history that fits the token budget.

    One instance per conversation; it owns the pin set and the
    summary table, nothing else is retained between builds.
    """

    def __init__(self, config: Optional[BudgetConfig] = None) -> None:
        self._config = config or BudgetConfig()
        self._pinned_ids: set[str] = set()
        self._summaries: dict[str, str] = {}  # date key -> summary

    @property
    def config(self) -> BudgetConfig:
        return self._config

    @property
    def pinned_ids(self) -> frozenset[str]:
        return frozenset(self._pinned_ids)

    @property
    def summaries(self) -> dict[str, str]:
        return dict(self._summaries)

    def pin(self, message_id: str) -> None:
        """Mark a message as mandatory for every future build."""
        self._pinned_ids.add(message_id)
        logger.debug(f"Pinned message {message_id} ({len(self._pinned_ids)} pinned)")

    def unpin(self, message_id: str) -> None:
        self._pinned_ids.discard(message_id)

    def add_summary(self, date_key: str, summary: str) -> None:
        """Store a summary for a conversation chunk (key format is the caller's)."""
        self._summaries[date_key] = summary

    def get_summary(self, date_key: str) -> Optional[str]:
        return self._summaries.get(date_key)

    @staticmethod
    def estimate_tokens(text: Optional[str]) -> int:
        return estimate_tokens(text)

    def configure_for_model(self, model: str) -> BudgetConfig:
        """Re-derive the budget from a model's published context window.

        Uses 60% of the window for conversation history; the rest is left
        for the instructional prompt, tool results and the reply.
        """
        limit = get_model_context_limit(model)
        large = limit > LARGE_WINDOW_TOKENS
        self._config = replace(
            self._config,
            max_context_tokens=int(limit * 0.6),
            reserve_for_response=min(16384, int(limit * 0.08)),
            summary_threshold=60 if large else 30,
            min_messages_to_keep=8 if large else 4,
        )
        logger.info(
            f"Configured for {model}: window={limit}, "
            f"max_context={self._config.max_context_tokens}, "
            f"reserve={self._config.reserve_for_response}"
        )
        return self._config

    def available_tokens(self, system_prompt_tokens: int = 0) -> int:
        available = (
            self._config.max_context_tokens
            - self._config.reserve_for_response
            - system_prompt_tokens
        )
        if available < 0:
            logger.warning(
                f"Token budget underflow: max={self._config.max_context_tokens}, "
                f"reserve={self._config.reserve_for_response}, "
                f"system={system_prompt_tokens}; clamping to 0"
            )
            return 0
        return available

    def build_context_window(
        self,
        history: list[Message],
        pinned: Optional[Iterable[str]] = None,
        system_prompt_tokens: int = 0,
    ) -> ContextWindow:
        """Build the best set of messages that fits within the token budget.

        Args:
            history: Conversation history, oldest first.
            pinned: Extra ids to treat as pinned for this call only.
            system_prompt_tokens: Tokens already taken by the instructional prompt.

        Returns:
            ContextWindow with admitted messages in chronological order.
        """
        if not history:
            return ContextWindow(messages=[], summary=None, total_tokens=0, dropped_count=0)

        available = self.available_tokens(system_prompt_tokens)
        pin_set = self._pinned_ids | set(pinned or ())

        total = len(history)
        scored = [self.score_message(m, i, total, pin_set) for i, m in enumerate(history)]

        # Always keep the last N messages regardless of score
        guaranteed_count = min(self._config.min_messages_to_keep, total)
        split = total - guaranteed_count
        guaranteed = scored[split:]
        candidates = scored[:split]

        used = sum(s.tokens for s in guaranteed)
        selected: list[ScoredMessage] = []

        # Pinned messages are mandatory, even past the budget
        for candidate in candidates:
            if candidate.pinned:
                selected.append(candidate)
                used += candidate.tokens

        pinned_overflow = used > available
        if pinned_overflow:
            logger.warning(
                f"Pinned and recent messages need {used} tokens, "
                f"budget is {available}; window exceeds budget"
            )

        # Greedy fill by importance; sorted() is stable so ties keep list order
        for candidate in sorted(candidates, key=lambda s: s.importance, reverse=True):
            if candidate.pinned:
                continue
            if used + candidate.tokens <= available:
                selected.append(candidate)
                used += candidate.tokens

        selected.sort(key=lambda s: s.message.timestamp)

        selected_ids = {id(s) for s in selected}
        dropped = [c.message for c in candidates if id(c) not in selected_ids]

        summary: Optional[str] = None
        if dropped and total > self._config.summary_threshold:
            summary = self.build_inline_summary(dropped)

        messages = [s.message for s in selected] + [s.message for s in guaranteed]
        logger.debug(
            f"Context window: {len(messages)}/{total} messages, "
            f"{used}/{available} tokens, {len(dropped)} dropped"
        )
        return ContextWindow(
            messages=messages,
            summary=summary,
            total_tokens=used,
            dropped_count=len(dropped),
            pinned_overflow=pinned_overflow,
        )

    def score_message(
        self,
        msg: Message,
        index: int,
        total: int,
        pin_set: Optional[set[str]] = None,
    ) -> ScoredMessage:
        """Score a message's importance given its position in history."""
        pin_set = self._pinned_ids if pin_set is None else pin_set
        tokens = estimate_tokens(msg.content)
        importance = 0.5

        # Recency bonus and decay for old messages
        importance += (index / total) * 0.3
        importance -= (total - index) * self._config.importance_decay_rate

        pinned = msg.id in pin_set
        if pinned:
            importance = 1.0

        content = msg.content or ""

        # Tool results: the agent actually did something
        if TOOL_RESULT_PATTERN.search(content):
            importance += 0.2
        if TOOL_CALL_PATTERN.search(content):
            importance += 0.15
        # Scheduled-job suggestions are decisions
        if CRON_PATTERN.search(content):
            importance += 0.2

        for pattern in HIGH_IMPORTANCE_PATTERNS:
            if pattern.search(content):
                importance += 0.1
                break

        if tokens > 200:
            importance += 0.1
        if tokens > 500:
            importance += 0.1
        if tokens < 10:
            importance -= 0.15

        if msg.role == "user" and "?" in content:
            importance += 0.05

        if msg.type == "analysis":
            importance += 0.15

        importance = max(0.0, min(1.0, importance))
        return ScoredMessage(message=msg, tokens=tokens, importance=importance, pinned=pinned)

    @staticmethod
    def build_inline_summary(messages: list[Message]) -> str:
        """Condense dropped messages into bullet points (heuristic, no model call)."""
        if not messages:
            return ""

        points: list[str] = []
        for msg in messages:
            content = msg.content or ""

            if msg.role == "user":
                question = QUESTION_PATTERN.search(content)
                if question:
                    points.append(f"Question: {question.group(0).strip()[:100]}")

            tool = re.match(r'Tool result "([^"]+)":', content)
            if tool:
                points.append(f"Used: {tool.group(1)}")

            for pattern in HIGH_IMPORTANCE_PATTERNS:
                match = pattern.search(content)
                if not match:
                    continue
                sentence = re.search(
                    r"[^.!?\n]*" + re.escape(match.group(0)) + r"[^.!?\n]*[.!?]?",
                    content,
                )
                if sentence:
                    points.append(sentence.group(0).strip()[:150])
                break

        unique = list(dict.fromkeys(p for p in points if p))[:MAX_SUMMARY_POINTS]
        if not unique:
            return (
                f"[Earlier conversation: {len(messages)} messages omitted "
                "due to context limit]"
            )

        bullets = "\n".join(f"- {p}" for p in unique)
        return f"[Earlier conversation summary ({len(messages)} messages):\n{bullets}\n]"
