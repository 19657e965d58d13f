"""Notification delivery service: typed notifications, channel plugins, preferences and retries."""

__version__ = "0.1.0"
