"""
Storage Layer.

This package handles persistence of the client configuration file.
"""

from .config_manager import ConfigManager

__all__ = ["ConfigManager"]
