"""Configuration management and dependency wiring."""

from .container import Container, setup_container
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "Container", "setup_container"]
