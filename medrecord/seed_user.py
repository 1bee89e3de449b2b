# medrecord/seed_user.py
"""Seed a clinician account plus a demo patient and print a bearer token for local use."""
import os
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

from medrecord.auth.jwt import create_access_token  # noqa: E402
from medrecord.db.session import SessionLocal  # noqa: E402
from medrecord.models import init_db  # noqa: E402
from medrecord.models.patient import Patient  # noqa: E402
from medrecord.models.user import ROLES, User  # noqa: E402


def seed_user(db, email: str, name: str, role: str) -> User:
    if role not in ROLES:
        raise SystemExit(f"DEMO_USER_ROLE must be one of {', '.join(ROLES)}")
    user = db.query(User).filter(User.email == email).first()
    if user:
        print(f"User already exists: {email} (id={user.id})")
        return user
    user = User(email=email, name=name, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"Seeded user: {email} (id={user.id}, role={role})")
    return user


def seed_patient(db) -> Patient:
    number = os.getenv("DEMO_PATIENT_DOCUMENT", "00000000T")
    patient = db.query(Patient).filter(Patient.document_number == number).first()
    if patient:
        return patient
    patient = Patient(
        first_name="Demo",
        last_name="Patient",
        date_of_birth=date(1980, 1, 1),
        document_type="DNI",
        document_number=number,
    )
    db.add(patient)
    db.commit()
    db.refresh(patient)
    print(f"Seeded patient: {patient.full_name} (id={patient.id})")
    return patient


def main():
    email = os.getenv("DEMO_USER_EMAIL", "doctor@example.com")
    name = os.getenv("DEMO_USER_NAME", "Demo Doctor")
    role = os.getenv("DEMO_USER_ROLE", "doctor")

    init_db()
    with SessionLocal() as db:
        user = seed_user(db, email, name, role)
        seed_patient(db)
        print(f"Bearer token: {create_access_token({'sub': user.email})}")


if __name__ == "__main__":
    main()
