"""TrackForge - AI music generation orchestration and media ingestion."""

__version__ = "0.1.0"
