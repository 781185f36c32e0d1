"""Monitoring and observability."""
from .metrics import metrics

__all__ = ["metrics"]
