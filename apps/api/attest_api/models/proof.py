"""Proof record model (current schema).

The table has evolved: the legacy shape stored ``type/sha256/payload`` and the
normalized shape stores ``kind/hash/meta``. The current shape carries both so
readers of either generation keep working. Writes go through
``attest_api.proofs.store`` which picks the column set for the schema version
actually deployed.
"""

from sqlalchemy import BigInteger, Column, Index, Integer, JSON, String, Text, UniqueConstraint

from attest_api.db.base import Base


class Proof(Base):
    """Content-addressed proof of a generated artifact."""

    __tablename__ = "proofs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(255), nullable=False)
    path = Column(Text, nullable=True)  # storage locator, '' for text-only proofs
    ts = Column(BigInteger, nullable=False)  # unix ms

    # Legacy columns
    type = Column(String(255), nullable=True)  # export:pdf, ai:compose, ...
    sha256 = Column(String(255), nullable=True)  # bare hex of the proof packet
    payload = Column(Text, nullable=True)  # canonical proof packet JSON

    # Normalized columns
    kind = Column(String(255), nullable=True)  # pdf, docx, ai:compose, ...
    hash = Column(String(255), nullable=True)  # sha256:<hex> of the artifact/output
    meta = Column(JSON, nullable=True)

    # Workspace scoping and storage client
    workspace_id = Column(String(255), nullable=True, index=True)
    created_by = Column(String(255), nullable=True)
    storage_key = Column(Text, nullable=True)
    storage_provider = Column(String(50), nullable=True)  # local, s3

    __table_args__ = (
        UniqueConstraint("subject_id", "kind", "ts", "hash", name="uq_proofs_subject_kind_ts_hash"),
        Index("ix_proofs_subject_ts", "subject_id", "ts"),
        Index("ix_proofs_kind", "kind"),
        {"sqlite_autoincrement": True},
    )
