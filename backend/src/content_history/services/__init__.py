"""History engine services."""
