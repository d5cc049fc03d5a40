"""Token-budgeted context windows and tiered prompt assembly for LLM agents."""

__version__ = "0.1.0"
