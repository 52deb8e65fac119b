"""
Database Models (SQLAlchemy ORM)
nav_record_history is insert-only - NO UPDATES, NO DELETES
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime,
    Boolean, ForeignKey, Text, Enum as SQLEnum, Index, JSON, UniqueConstraint
)

from app.domain.models import ApprovalStatus, CalculationStatus, NAVRecordStatus, NAVRunStatus
from app.infrastructure.db.database import Base
from app.utils.time import now_utc_naive


class NAVRecordModel(Base):
    """One NAV per fund, share class and date"""
    __tablename__ = "nav_record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fund_id = Column(String(64), nullable=False)
    share_class_id = Column(String(64), nullable=False)
    nav_date = Column(Date, nullable=False)

    nav_per_share = Column(Numeric(24, 10), nullable=False)
    net_asset_value = Column(Numeric(24, 6), nullable=False)
    gross_assets = Column(Numeric(24, 6), nullable=False)
    total_liabilities = Column(Numeric(24, 6), nullable=False)
    shares_outstanding = Column(Numeric(24, 6), nullable=False)
    nav_change = Column(Numeric(24, 10), nullable=False, default=0)
    nav_change_percent = Column(Numeric(14, 6), nullable=False, default=0)

    calculation_status = Column(SQLEnum(CalculationStatus, name="calculation_status"), nullable=False)
    status = Column(SQLEnum(NAVRecordStatus, name="nav_record_status"), nullable=False)

    # Full breakdown, validation issues and audit trail
    breakdown = Column(JSON, nullable=False, default=dict)
    validation = Column(JSON, nullable=False, default=dict)

    calculated_at = Column(DateTime, nullable=False, default=now_utc_naive)
    approval_id = Column(String(36), nullable=True)
    approved_by = Column(JSON, nullable=False, default=list)
    approved_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)
    updated_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        UniqueConstraint("fund_id", "share_class_id", "nav_date", name="uq_nav_record_key"),
        Index("ix_nav_record_fund_date", "fund_id", "share_class_id", "nav_date"),
        Index("ix_nav_record_status", "status"),
    )


class NAVRecordHistoryModel(Base):
    """Previous values of a NAV record, appended on every change"""
    __tablename__ = "nav_record_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nav_record_id = Column(Integer, ForeignKey("nav_record.id"), nullable=False)
    fund_id = Column(String(64), nullable=False)
    share_class_id = Column(String(64), nullable=False)
    nav_date = Column(Date, nullable=False)
    version = Column(Integer, nullable=False)

    previous_status = Column(SQLEnum(NAVRecordStatus, name="nav_record_status"), nullable=False)
    new_status = Column(SQLEnum(NAVRecordStatus, name="nav_record_status"), nullable=False)
    nav_per_share = Column(Numeric(24, 10), nullable=False)
    net_asset_value = Column(Numeric(24, 6), nullable=False)
    snapshot = Column(JSON, nullable=False, default=dict)

    reason = Column(Text, nullable=True)
    changed_by = Column(String(100), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        Index("ix_nav_record_history_record", "nav_record_id", "version"),
    )


class NAVApprovalModel(Base):
    """Two-person approval of one batch run"""
    __tablename__ = "nav_approval"

    approval_id = Column(String(36), primary_key=True)
    run_id = Column(String(36), nullable=False, index=True)
    nav_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(ApprovalStatus, name="approval_status"), nullable=False)

    # [[fund_id, share_class_id], ...]
    covered = Column(JSON, nullable=False, default=list)
    summary = Column(JSON, nullable=False, default=list)

    first_approval = Column(JSON(none_as_null=True), nullable=True)
    second_approval = Column(JSON(none_as_null=True), nullable=True)
    rejection = Column(JSON(none_as_null=True), nullable=True)
    published = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(DateTime, nullable=False, default=now_utc_naive)
    updated_at = Column(DateTime, nullable=False, default=now_utc_naive)

    __table_args__ = (
        Index("ix_nav_approval_status", "status"),
    )


class NAVRunModel(Base):
    """Batch run over all active fund/share classes"""
    __tablename__ = "nav_run"

    run_id = Column(String(36), primary_key=True)
    nav_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(NAVRunStatus, name="nav_run_status"), nullable=False)
    started_at = Column(DateTime, nullable=False, default=now_utc_naive)
    completed_at = Column(DateTime, nullable=True)

    total_funds = Column(Integer, nullable=False, default=0)
    completed_funds = Column(Integer, nullable=False, default=0)
    failed_funds = Column(Integer, nullable=False, default=0)

    summary = Column(JSON, nullable=False, default=list)
    errors = Column(JSON, nullable=False, default=list)

    triggered_by = Column(String(50), nullable=False, default="MANUAL")
    attempt = Column(Integer, nullable=False, default=1)
    auto_approve_eligible = Column(Boolean, nullable=True)
    approval_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_nav_run_date_started", "nav_date", "started_at"),
    )


class FundConfigModel(Base):
    """Per-fund fee, pricing and accrual policy"""
    __tablename__ = "fund_config"

    fund_id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_utc_naive)
    updated_at = Column(DateTime, nullable=False, default=now_utc_naive)
