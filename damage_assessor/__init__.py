"""Photo damage assessment orchestrator."""

__version__ = "0.1.0"
