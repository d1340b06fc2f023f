"""Drift monitoring against last known-good product baselines."""

from catalog_compliance.monitoring.drift import MONITORED_FIELDS, DriftDetector, monitored_values

__all__ = [
    "MONITORED_FIELDS",
    "DriftDetector",
    "monitored_values",
]
