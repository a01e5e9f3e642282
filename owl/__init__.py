"""
owl: cross-reference Prometheus rules, metric names and Grafana dashboards.

This package hosts the snapshot exporters, the PromQL identifier extractor
and the reconciliation analyses.
"""

from .__version__ import __version__

__all__ = ["__version__"]
