"""Context budgeting for LLM agent threads."""

__version__ = "0.1.0"
