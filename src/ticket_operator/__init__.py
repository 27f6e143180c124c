"""Multi-agent ticket orchestrator for LLM CLI sessions."""

__version__ = "0.4.0"
