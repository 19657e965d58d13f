"""FastAPI host application for the notification service."""
