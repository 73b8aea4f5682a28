"""Application services (configuration persistence)."""
