"""
Document model — one row per (doc_type, doc_id), JSON payload in `data`.

Leadsets, runs, items, enrichment jobs, the feed snapshot and the change
version all live in this single table.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func

from scout.database import Base


class Document(Base):
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True, autoincrement=True)
    doc_type = Column(Text, nullable=False, index=True)
    doc_id = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('doc_type', 'doc_id', name='uq_document_type_id'),
    )
