"""Periodic catalog health reports.

Modules:
- aggregator: streams audits into a CatalogReport for a weekly or monthly period
- suggestions: rule-based, prioritized recommendations
"""
