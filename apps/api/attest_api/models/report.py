"""Verification report models."""

from sqlalchemy import BigInteger, CheckConstraint, Column, Index, Integer, JSON, String

from attest_api.db.base import Base


class VerificationReport(Base):
    """Outcome of one nightly verification run."""

    __tablename__ = "verification_reports"

    id = Column(String(64), primary_key=True)  # vr_<token>
    created_at = Column(BigInteger, nullable=False)  # unix ms
    status = Column(String(20), nullable=False)  # pass, fail, partial
    exports_pass = Column(Integer, default=0, nullable=False)
    exports_fail = Column(Integer, default=0, nullable=False)
    exports_miss = Column(Integer, default=0, nullable=False)
    compose_pass = Column(Integer, default=0, nullable=False)
    compose_drift = Column(Integer, default=0, nullable=False)
    compose_miss = Column(Integer, default=0, nullable=False)
    report_json = Column(JSON, nullable=False)
    triggered_by = Column(String(100), default="cron", nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('pass', 'fail', 'partial')", name="ck_verification_reports_status"),
        Index("ix_verification_reports_created_at", "created_at"),
        Index("ix_verification_reports_status", "status"),
    )
