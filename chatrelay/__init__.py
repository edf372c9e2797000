"""chatrelay: streaming LLM chat client and SSE relay proxy."""

__version__ = "0.1.0"
