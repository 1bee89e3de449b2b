# medrecord/models/lab_report.py
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medrecord.db.session import Base
from medrecord.utils.dates import utcnow
from medrecord.utils.encryption import EncryptedText

LAB_SOURCES = ("ai", "ocr", "manual")


class LabReport(Base):
    __tablename__ = "lab_reports"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("patients.id", ondelete="CASCADE"), index=True, nullable=False
    )
    consultation_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("consultations.id", ondelete="SET NULL"), nullable=True
    )
    document_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("uploaded_documents.id", ondelete="SET NULL"), nullable=True
    )

    report_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="manual")
    summary: Mapped[Optional[str]] = mapped_column(EncryptedText, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    patient = relationship("Patient", back_populates="lab_reports")
    document = relationship("UploadedDocument")
    values: Mapped[List["LabValue"]] = relationship(
        "LabValue",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="LabValue.position",
    )


class LabValue(Base):
    """One extracted test/result pair, stored verbatim."""

    __tablename__ = "lab_values"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    report_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lab_reports.id", ondelete="CASCADE"), index=True, nullable=False
    )
    # extraction order inside the report
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    test: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    unit: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    range: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    flag: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    report = relationship("LabReport", back_populates="values")
