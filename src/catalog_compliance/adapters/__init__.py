"""Adapters — storage and outbound integrations for the compliance engine.

Contains:
- database.py      — async engine and session factory lifecycle
- repositories.py  — SQLAlchemy implementations of the repository Protocols
- memory.py        — in-memory implementations of the same Protocols
- notifier.py      — best-effort webhook notifier
"""

__all__: list[str] = []
