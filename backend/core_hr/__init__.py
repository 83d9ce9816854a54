"""Core HR module — Employee model and the employee directory."""

from backend.core_hr.models import Employee

__all__ = ["Employee"]
