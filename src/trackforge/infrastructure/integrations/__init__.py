"""Integrations with external generation providers."""

from trackforge.config import Settings
from trackforge.domain.ports import IGenerationProvider
from trackforge.domain.value_objects import ServiceName

from .mureka_client import MurekaClient
from .suno_client import SunoClient


def build_providers(settings: Settings) -> dict[ServiceName, IGenerationProvider]:
    """Create one client per supported service."""
    return {
        ServiceName.SUNO: SunoClient(settings.suno),
        ServiceName.MUREKA: MurekaClient(settings.mureka),
    }


__all__ = ["MurekaClient", "SunoClient", "build_providers"]
