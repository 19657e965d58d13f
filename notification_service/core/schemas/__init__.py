"""Shared API schemas."""

from notification_service.core.schemas.problem_details import ProblemDetails

__all__ = ["ProblemDetails"]
