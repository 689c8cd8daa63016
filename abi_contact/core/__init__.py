"""Core configuration, logging and telemetry."""
