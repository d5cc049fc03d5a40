"""Published context-window sizes for known model families."""

import re

DEFAULT_CONTEXT_LIMIT = 128000

# Ordered: the first matching pattern wins, so narrower prefixes come first.
MODEL_CONTEXT_LIMITS: list[tuple[re.Pattern, int]] = [
    # OpenAI
    (re.compile(r"^gpt-5"), 400000),
    (re.compile(r"^gpt-4\.1"), 1047576),
    (re.compile(r"^gpt-4o"), 128000),
    (re.compile(r"^gpt-4-turbo"), 128000),
    (re.compile(r"^gpt-4"), 8192),
    (re.compile(r"^o[0-9]"), 200000),
    # Anthropic
    (re.compile(r"claude-"), 200000),
    # Google
    (re.compile(r"gemini-1\.5-pro"), 2097152),
    (re.compile(r"gemini-"), 1048576),
]


def get_model_context_limit(model: str) -> int:
    """Return the context window in tokens for a model identifier.

    Unrecognized identifiers get DEFAULT_CONTEXT_LIMIT.
    """
    name = (model or "").strip().lower()
    for pattern, limit in MODEL_CONTEXT_LIMITS:
        if pattern.search(name):
            return limit
    return DEFAULT_CONTEXT_LIMIT
