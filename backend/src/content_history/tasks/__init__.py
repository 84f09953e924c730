"""Maintenance tasks run from the command line."""
