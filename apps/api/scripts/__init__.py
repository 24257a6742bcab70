"""Operational scripts (SLO checks over the metrics event log)."""

from . import check_slo as check_slo

__all__ = ["check_slo"]
