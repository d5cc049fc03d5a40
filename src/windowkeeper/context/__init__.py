"""Context window admission and tiered prompt assembly."""

from .assembler import StructuredContext, TieredAssembler
from .history import HistoryStore, InMemoryHistory
from .maintenance import HistoryCompactor, MemoryFlusher
from .memory_filter import select_relevant_memory
from .message import ContextWindow, Message, ScoredMessage
from .models import get_model_context_limit
from .modes import ModuleTable, OperatingMode, resolve_modules
from .sources import ActiveHours, BackgroundTask, ContextSources, CronJob, IndexStats
from .window import BudgetConfig, WindowBuilder, estimate_tokens

__all__ = [
    "ActiveHours",
    "BackgroundTask",
    "BudgetConfig",
    "ContextSources",
    "ContextWindow",
    "CronJob",
    "HistoryCompactor",
    "HistoryStore",
    "InMemoryHistory",
    "IndexStats",
    "MemoryFlusher",
    "Message",
    "ModuleTable",
    "OperatingMode",
    "ScoredMessage",
    "StructuredContext",
    "TieredAssembler",
    "WindowBuilder",
    "estimate_tokens",
    "get_model_context_limit",
    "resolve_modules",
    "select_relevant_memory",
]
