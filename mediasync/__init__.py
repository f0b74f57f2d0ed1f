"""Bucket-to-database sync of artwork media."""

from .reconcile import ReconciliationDriver, RunAccounting

__all__ = ["ReconciliationDriver", "RunAccounting"]
