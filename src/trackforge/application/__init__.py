"""Application layer: generation services and background workers."""
