"""Product listing checklist: the rule set and the audit evaluator.

Modules:
- rules: rule catalog, thresholds and presentation order
- evaluator: runs every rule against a snapshot and builds an AuditRecord
"""
