import io
import os
from datetime import date, datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB and never call the remote model
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""

from medrecord.app import app
from medrecord.auth.deps import get_current_user
from medrecord.db.session import Base, get_db
from medrecord.middleware.rate_limit import limiter
from medrecord.models.patient import Consultation, Patient
from medrecord.models.user import User  # noqa: F401
from medrecord.services.store import SqlRecordStore


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

DOCTOR = SimpleNamespace(id="user-1", email="doc@example.com", name="Dr. Test", role="doctor")


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db
app.dependency_overrides[get_current_user] = lambda: DOCTOR

# Startup hooks create tables through the package engine; point it at the test engine
import medrecord.db.session as session_mod
session_mod.engine = engine
session_mod.SessionLocal = TestingSessionLocal
import medrecord.models as models_mod
models_mod.engine = engine


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    # ensure limiter state fresh each test
    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def upload_root(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    monkeypatch.setenv("UPLOAD_ROOT", str(root))
    return root


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return SqlRecordStore(db)


@pytest.fixture
def patient(db):
    p = Patient(
        first_name="Ana",
        last_name="García",
        gender="F",
        date_of_birth=date(1985, 3, 14),
        document_type="DNI",
        document_number="12345678",
        phone="+34 600 000 000",
        email="ana@example.com",
        address="Calle Mayor 1, Madrid",
        blood_type="O+",
        emergency_contact={"name": "Luis García", "relationship": "brother", "phone": "+34 611 111 111"},
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def consultation(db, patient):
    c = Consultation(
        patient_id=patient.id,
        date=datetime(2024, 5, 2, 10, 30),
        status="closed",
        reason="Fatigue",
        doctor="Dr. House",
        summary="Likely iron deficiency.",
        chief_complaint={"description": "Tiredness for 3 weeks", "duration": "3 weeks"},
        vital_signs={"bloodPressure": "120/80", "heartRate": 72, "temperature": "36.6"},
        physical_exam={
            "general": {"appearance": "pale", "hydration": "normal"},
            "bySystem": {"cardiovascular": "regular rhythm"},
            "observations": "No acute distress",
            "specificFindings": {"normal": ["lungs clear"], "abnormal": "conjunctival pallor", "clinicalImpression": "anemia"},
        },
        diagnosis={"primary": "Iron deficiency anemia", "codes": ["D50.9"]},
        treatment="Ferrous sulfate 325 mg daily",
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def build_pdf(pages):
    """Build a text PDF; ``pages`` is a list of line lists, one per page."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    _width, height = A4
    for lines in pages:
        c.setFont("Helvetica", 11)
        y = height - 72
        for line in lines:
            c.drawString(72, y, line)
            y -= 18
        c.showPage()
    c.save()
    return buffer.getvalue()


@pytest.fixture
def pdf_factory():
    return build_pdf
