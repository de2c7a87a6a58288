"""TaskPulse Core REST API."""
