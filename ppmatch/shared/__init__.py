"""Shared models, enums and exceptions used across PPMatch."""
