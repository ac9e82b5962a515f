"""Configuration module for TrackForge."""

from .settings import (
    MurekaSettings,
    ProviderSettings,
    Settings,
    SunoSettings,
    get_settings,
)

__all__ = [
    "MurekaSettings",
    "ProviderSettings",
    "Settings",
    "SunoSettings",
    "get_settings",
]
