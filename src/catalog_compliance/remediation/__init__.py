"""Automated fixes for failed checklist items.

Modules:
- fixes: pure remediation functions producing catalog patches
- dispatcher: registry validation, bounded execution and audit refresh
"""
