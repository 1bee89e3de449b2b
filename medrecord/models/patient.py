import uuid
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import String, Date, DateTime, ForeignKey, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medrecord.db.session import Base
from medrecord.utils.dates import utcnow
from medrecord.utils.encryption import EncryptedText, EncryptedJSON


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    document_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    document_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(EncryptedText, nullable=True)
    blood_type: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    # {"name", "relationship", "phone"} or a free-text note
    emergency_contact: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, server_default=text("CURRENT_TIMESTAMP")
    )

    # Lab reports and documents are append-only; they go away only with the patient.
    consultations: Mapped[List["Consultation"]] = relationship(
        "Consultation", back_populates="patient", cascade="all, delete-orphan"
    )
    lab_reports: Mapped[List["LabReport"]] = relationship(
        "LabReport", back_populates="patient", cascade="all, delete-orphan"
    )
    documents: Mapped[List["UploadedDocument"]] = relationship(
        "UploadedDocument", back_populates="patient", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Consultation(Base):
    __tablename__ = "consultations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("patients.id", ondelete="CASCADE"), index=True, nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    doctor: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(EncryptedText, nullable=True)

    # Narrative blocks: plain text or nested objects captured by the clinical forms
    chief_complaint: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)
    vital_signs: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)
    physical_exam: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)
    diagnosis: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)
    treatment: Mapped[Optional[Any]] = mapped_column(EncryptedJSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, server_default=text("CURRENT_TIMESTAMP")
    )

    patient = relationship("Patient", back_populates="consultations")
