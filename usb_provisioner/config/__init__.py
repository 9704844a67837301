"""Run configuration and settings file handling."""
