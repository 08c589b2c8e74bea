"""IDK Gateway: OpenAI-compatible gateway in front of many AI providers."""

__version__ = "0.1.0"
