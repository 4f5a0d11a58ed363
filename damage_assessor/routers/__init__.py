"""Router package for the damage assessment API."""

from . import assessment, conversation, health, knowledge, stats  # noqa: F401

__all__ = ["assessment", "conversation", "health", "knowledge", "stats"]
