"""SQLAlchemy ORM models for the catalog compliance engine.

All models use the `cc_` table prefix and extend CatalogModel for the
id (UUID), tenant_id and created_at columns.

Models:
- AuditRecordRow      — materialized audit, one live row per (tenant, product)
- ProductBaselineRow  — last known-good monitored field values per product
- FieldVersionRow     — append-only field history, pruned by age
- DriftRecordRow      — drift observations; open rows are unique per (product, field)
- CatalogReportRow    — immutable report, one per (tenant, period)

Nested structures (audit items, report sections) are stored in JSON columns
(JSONB on PostgreSQL) and converted to typed domain models by the
repositories only. Domain code never sees these classes.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, TypeDecorator, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONColumn = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime column normalized to UTC on every backend.

    SQLite drops tzinfo on the way back; values are re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime cannot be stored; attach a timezone")
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base holding the metadata of every cc_ table."""


class CatalogModel(Base):
    """Abstract base providing id, tenant_id and created_at."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning tenant (shop) identifier",
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )


class AuditRecordRow(CatalogModel):
    """Latest audit of one product.

    Overwritten in place on every accepted recompute. ``source_updated_at``
    is the snapshot timestamp the audit was built from and guards against
    stale recomputes overwriting newer ones.
    """

    __tablename__ = "cc_audit_records"
    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", name="uq_cc_audit_records_tenant_product"),
        Index("ix_cc_audit_records_tenant_status_updated", "tenant_id", "status", "updated_at"),
    )

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="ready | incomplete")
    passed_count: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONColumn,
        nullable=False,
        comment="Ordered list of AuditItemResult objects",
    )
    source_updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ProductBaselineRow(CatalogModel):
    """Monitored field values captured when the product was last known-good."""

    __tablename__ = "cc_product_baselines"
    __table_args__ = (UniqueConstraint("tenant_id", "product_id", name="uq_cc_product_baselines_tenant_product"),)

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    field_values: Mapped[dict[str, Any]] = mapped_column(JSONColumn, nullable=False)
    source_updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class FieldVersionRow(CatalogModel):
    """The value a field held immediately before change ``version`` was applied.

    Version numbers are monotonic per (tenant, product, field) and never
    reused. The unique constraint rejects a concurrent writer that computed
    the same next version.
    """

    __tablename__ = "cc_field_versions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "product_id",
            "field",
            "version",
            name="uq_cc_field_versions_tenant_product_field_version",
        ),
    )

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="manual_edit | ai_generate | ai_expand | ai_improve | ai_replace",
    )
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)


class DriftRecordRow(CatalogModel):
    """A monitored field observed away from its baseline."""

    __tablename__ = "cc_drift_records"
    __table_args__ = (
        Index("ix_cc_drift_records_open", "tenant_id", "product_id", "field", "is_resolved"),
        Index("ix_cc_drift_records_detected", "tenant_id", "detected_at"),
    )

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    drift_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, comment="high | medium | low")
    previous_value: Mapped[str] = mapped_column(Text, nullable=False)
    observed_value: Mapped[str] = mapped_column(Text, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(20), nullable=True, comment="user | auto | ignored")


class CatalogReportRow(CatalogModel):
    """Immutable catalog health report for one period."""

    __tablename__ = "cc_catalog_reports"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "period_start",
            "period_end",
            name="uq_cc_catalog_reports_tenant_period",
        ),
    )

    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    total_products: Mapped[int] = mapped_column(Integer, nullable=False)
    ready_products: Mapped[int] = mapped_column(Integer, nullable=False)
    incomplete_products: Mapped[int] = mapped_column(Integer, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, nullable=False)
    previous_average_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    top_issues: Mapped[list[dict[str, Any]]] = mapped_column(JSONColumn, nullable=False)
    products_at_risk: Mapped[list[dict[str, Any]]] = mapped_column(JSONColumn, nullable=False)
    most_improved: Mapped[list[dict[str, Any]]] = mapped_column(JSONColumn, nullable=False)
    drifts_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    drifts_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    drifts_unresolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    suggestions: Mapped[list[dict[str, Any]]] = mapped_column(JSONColumn, nullable=False)
    product_scores: Mapped[dict[str, Any]] = mapped_column(
        JSONColumn,
        nullable=False,
        comment="product_id -> score at generation time; baseline for the next report's most_improved",
    )
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
