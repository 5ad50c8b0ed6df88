"""Configuration layer."""

from agent_stream.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
