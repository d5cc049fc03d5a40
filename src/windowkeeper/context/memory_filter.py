"""Relevance filtering of long-term memory notes for the system prompt."""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

logger = logging.getLogger(__name__)

MIN_FILTER_CHARS = 500
MEMORY_CHAR_BUDGET = 14000
TRUNCATED_MARKER = "\n... (truncated)"

_HEADER = re.compile(r"^#{1,6}[ \t]+.*$", re.MULTILINE)
_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_WORD = re.compile(r"\w+", re.UNICODE)


@dataclass
class MemorySection:
    header: str
    body: str
    index: int
    score: int = 0


def split_sections(notes: str) -> list[MemorySection]:
    """Split markdown notes at header lines; text before the first header is its own section."""
    starts = [m.start() for m in _HEADER.finditer(notes)]
    if not starts or starts[0] != 0:
        starts.insert(0, 0)
    sections = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(notes)
        chunk = notes[start:end].strip("\n")
        if not chunk.strip():
            continue
        first_line = chunk.split("\n", 1)[0]
        header = first_line if _HEADER.match(first_line) else ""
        sections.append(MemorySection(header=header, body=chunk, index=len(sections)))
    return sections


def query_keywords(query: str) -> list[str]:
    words = [w.lower() for w in _WORD.findall(query or "") if len(w) > 2]
    return list(dict.fromkeys(words))


def _recency_bonus(text: str, today: date) -> int:
    best = 0
    for match in _DATE.finditer(text):
        try:
            found = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            continue
        age = abs((today - found).days)
        if age <= 7:
            return 3
        if age <= 30:
            best = 1
    return best


def score_section(section: MemorySection, keywords: list[str], today: date) -> int:
    body = section.body.lower()
    header = section.header.lower()
    score = 0
    for kw in keywords:
        if kw in body:
            score += 2
        if header and kw in header:
            score += 5
    return score + _recency_bonus(section.body, today)


def select_relevant_memory(
    notes: str,
    query: Optional[str],
    budget: int = MEMORY_CHAR_BUDGET,
    now: Optional[datetime] = None,
) -> str:
    """Keep the sections of `notes` most relevant to `query` within a character budget.

    Short notes or a missing query are returned untouched. Sections are
    ranked by keyword hits (header hits weigh more) and recent dates,
    then admitted greedily; a relevant section that overflows is cut
    to the remaining space, and anything left out is counted in a note.
    """
    if not notes or not query or len(notes) <= MIN_FILTER_CHARS:
        return notes

    today = (now or datetime.now()).date()
    keywords = query_keywords(query)
    sections = split_sections(notes)
    for section in sections:
        section.score = score_section(section, keywords, today)

    ranked = sorted(sections, key=lambda s: s.score, reverse=True)

    kept: list[MemorySection] = []
    kept_text: dict[int, str] = {}
    used = 0
    omitted = 0
    for section in ranked:
        size = len(section.body) + 2
        if used + size <= budget:
            kept.append(section)
            kept_text[section.index] = section.body
            used += size
            continue
        remaining = budget - used - len(TRUNCATED_MARKER) - 2
        if section.score > 0 and remaining > 0:
            kept.append(section)
            kept_text[section.index] = section.body[:remaining] + TRUNCATED_MARKER
            used = budget
            continue
        omitted += 1

    # Keep the original document order for what survived
    kept.sort(key=lambda s: s.index)
    result = "\n\n".join(kept_text[s.index] for s in kept)
    if omitted:
        result += f"\n\n({omitted} sections omitted)"
        logger.debug(f"Memory filter kept {len(kept)} sections, omitted {omitted}")
    return result
