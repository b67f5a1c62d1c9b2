"""Provenance event log model."""

from sqlalchemy import BigInteger, Column, Index, Integer, JSON, String

from attest_api.db.base import Base


class ProvenanceEvent(Base):
    """Append-only record of who did what to which subject."""

    __tablename__ = "provenance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(255), nullable=False)
    action = Column(String(255), nullable=False)  # export:pdf, ai:compose, rename, ...
    actor = Column(String(50), nullable=False)  # human, ai, system
    actor_id = Column(String(255), nullable=True)
    workspace_id = Column(String(255), nullable=True, index=True)
    ts = Column(BigInteger, nullable=False)  # unix ms
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_provenance_subject_ts", "subject_id", "ts"),
        {"sqlite_autoincrement": True},
    )
