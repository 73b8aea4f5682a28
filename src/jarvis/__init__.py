"""Jarvis visual chat: streamed multi-modal answers on a desktop overlay."""

__version__ = "1.0.0"

__all__ = ["__version__"]
