"""Reconciliation analyses over monitoring snapshots."""

from .reconciler import Reconciler, clamp_limit, distinct_rule_names

__all__ = ["Reconciler", "clamp_limit", "distinct_rule_names"]
