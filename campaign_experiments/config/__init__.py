"""
Configuration module for the experimentation engine.

Provides centralized configuration management using Pydantic settings
and YAML-based configuration files.
"""

from .settings import ExperimentSettings, Settings, get_settings

__all__ = ["ExperimentSettings", "Settings", "get_settings"]
