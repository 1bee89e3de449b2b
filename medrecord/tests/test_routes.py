import io
from datetime import datetime
from types import SimpleNamespace

from pypdf import PdfReader

from medrecord.app import app
from medrecord.auth.deps import get_current_user
from medrecord.auth.jwt import create_access_token
from medrecord.models.user import User
from medrecord.models.lab_report import LabReport, LabValue
from medrecord.models.patient import Patient

LAB_LINES = ["LABORATORIO CENTRAL", "Glucosa: 110 mg/dL (70-100)", "Colesterol total: 245 mg/dL (<200)"]


def upload(client, patient_id, data, name="lab.pdf", mime="application/pdf", **form):
    return client.post(f"/api/labs/upload/{patient_id}", files={"file": (name, data, mime)}, data=form)


def add_report(db, patient, day, values):
    report = LabReport(patient_id=patient.id, report_date=day, created_at=day, source="ocr", summary="")
    db.add(report)
    db.flush()
    for position, v in enumerate(values):
        db.add(LabValue(report_id=report.id, position=position, **v))
    db.commit()
    return report


def test_upload_lab_pdf_extracts_values(client, patient, pdf_factory, upload_root):
    r = upload(client, patient.id, pdf_factory([LAB_LINES]))
    assert r.status_code == 201, r.text
    body = r.json()

    assert body["ocrStatus"] == "done"
    assert body["parsed"] is True
    assert body["document"]["patientId"] == patient.id
    assert body["document"]["mimeType"] == "application/pdf"
    report = body["labReport"]
    assert report["source"] == "ocr"
    assert report["documentId"] == body["document"]["id"]
    assert [(v["test"], v["value"], v["position"]) for v in report["values"]] == [
        ("Glucosa", "110", 0),
        ("Colesterol total", "245", 1),
    ]
    assert len(list(upload_root.rglob("*.pdf"))) == 1


def test_upload_without_lab_lines_is_kept_as_failed(client, patient, pdf_factory):
    r = upload(client, patient.id, pdf_factory([["Informe de alta", "Sin analitica"]]))
    assert r.status_code == 201
    body = r.json()
    assert body["ocrStatus"] == "failed"
    assert body["parsed"] is False
    assert body["labReport"]["values"] == []
    assert body["labReport"]["source"] == "manual"


def test_upload_links_consultation(client, patient, consultation, pdf_factory):
    r = upload(client, patient.id, pdf_factory([LAB_LINES]), consultation_id=consultation.id)
    assert r.status_code == 201
    assert r.json()["labReport"]["consultationId"] == consultation.id
    assert r.json()["document"]["consultationId"] == consultation.id


def test_upload_rejects_consultation_of_another_patient(client, db, consultation, pdf_factory, upload_root):
    other = Patient(first_name="Luis", last_name="Pérez", document_type="DNI", document_number="87654321")
    db.add(other)
    db.commit()

    r = upload(client, other.id, pdf_factory([LAB_LINES]), consultation_id=consultation.id)
    assert r.status_code == 400
    assert r.json()["code"] == "BAD_REQUEST"
    assert "does not belong" in r.json()["message"]
    assert not upload_root.exists() or list(upload_root.rglob("*.pdf")) == []
    assert client.get("/api/labs/by-patient", params={"patient_id": other.id}).json() == []


def test_upload_unknown_consultation_returns_404(client, patient, pdf_factory, upload_root):
    r = upload(client, patient.id, pdf_factory([LAB_LINES]), consultation_id="nope")
    assert r.status_code == 404
    assert r.json()["message"] == "Consultation not found: nope"
    assert not upload_root.exists() or list(upload_root.rglob("*.pdf")) == []


def test_report_date_form_field_overrides_extracted_date(client, patient, pdf_factory):
    r = upload(client, patient.id, pdf_factory([LAB_LINES]), report_date="2024-03-15")
    assert r.status_code == 201
    assert r.json()["labReport"]["reportDate"].startswith("2024-03-15")

    r = upload(client, patient.id, pdf_factory([LAB_LINES]), report_date="15/03/2024")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid report_date: 15/03/2024"


def test_pasted_text_creates_report_without_document(client, patient, consultation, upload_root):
    texto = "\n".join(LAB_LINES + ["Vitamina B12: 150 pg/mL (200-900)"])
    r = client.post(
        f"/api/labs/upload/{patient.id}",
        data={"texto": texto, "consultation_id": consultation.id, "report_date": "2024-05-02"},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["document"] is None
    assert body["ocrStatus"] == "done"
    assert body["parsed"] is True
    report = body["labReport"]
    assert report["documentId"] is None
    assert report["consultationId"] == consultation.id
    assert report["reportDate"].startswith("2024-05-02")
    assert [v["test"] for v in report["values"]] == ["Glucosa", "Colesterol total", "Vitamina B12"]
    assert not upload_root.exists() or list(upload_root.rglob("*")) == []

    # no stored file to download
    assert client.get(f"/api/labs/{report['id']}/pdf").status_code == 404


def test_pasted_text_without_results_is_kept_as_failed(client, patient):
    r = client.post(f"/api/labs/upload/{patient.id}", data={"texto": "Paciente estable, sin analitica"})
    assert r.status_code == 201
    assert r.json()["ocrStatus"] == "failed"
    assert r.json()["labReport"]["source"] == "manual"


def test_upload_needs_file_or_text(client, patient):
    r = client.post(f"/api/labs/upload/{patient.id}", data={"texto": "   "})
    assert r.status_code == 400
    assert r.json()["message"] == "Send a file or texto"


def test_list_reports_by_consultation(client, patient, consultation, pdf_factory):
    upload(client, patient.id, pdf_factory([LAB_LINES]), consultation_id=consultation.id)
    upload(client, patient.id, pdf_factory([LAB_LINES]))

    r = client.get("/api/labs/by-consultation", params={"consultation_id": consultation.id})
    assert r.status_code == 200
    assert len(r.json()) == 1
    assert r.json()[0]["consultationId"] == consultation.id

    r = client.get("/api/labs/by-consultation", params={"consultation_id": "nope"})
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_upload_empty_file_returns_400(client, patient):
    r = upload(client, patient.id, b"")
    assert r.status_code == 400
    j = r.json()
    assert j["code"] == "BAD_REQUEST"
    assert j["message"] == "Empty file"
    assert "trace_id" in j


def test_upload_unknown_patient_returns_404(client, pdf_factory):
    r = upload(client, "nope", pdf_factory([LAB_LINES]))
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_upload_rejects_unsupported_type(client, patient):
    r = upload(client, patient.id, b"a,b,c", name="labs.csv", mime="text/csv")
    assert r.status_code == 415
    assert r.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"


def test_upload_rejects_oversized_file(client, patient, monkeypatch):
    monkeypatch.setenv("MAX_FILE_MB", "1")
    r = upload(client, patient.id, b"%PDF" + b"0" * (1024 * 1024 + 1))
    assert r.status_code == 413


def test_upload_is_rate_limited(client, patient):
    for _ in range(10):
        assert upload(client, patient.id, b"").status_code == 400
    r = upload(client, patient.id, b"")
    assert r.status_code == 429
    assert r.json()["code"] == "TOO_MANY_REQUESTS"
    assert "Retry-After" in r.headers


def test_list_reports_by_patient(client, patient, pdf_factory):
    upload(client, patient.id, pdf_factory([LAB_LINES]))
    upload(client, patient.id, pdf_factory([["nothing here"]]))

    r = client.get("/api/labs/by-patient", params={"patient_id": patient.id})
    assert r.status_code == 200
    assert len(r.json()) == 2
    assert all(item["patientId"] == patient.id for item in r.json())

    assert client.get("/api/labs/by-patient", params={"patient_id": "nope"}).status_code == 404


def test_download_lab_pdf_with_watermark(client, patient, pdf_factory):
    original = pdf_factory([LAB_LINES])
    report_id = upload(client, patient.id, original).json()["labReport"]["id"]

    plain = client.get(f"/api/labs/{report_id}/pdf")
    assert plain.status_code == 200
    assert plain.content == original
    assert plain.headers["cache-control"] == "no-store"
    assert 'filename="lab.pdf"' in plain.headers["content-disposition"]

    stamped = client.get(f"/api/labs/{report_id}/pdf", params={"watermark": "corner", "intensity": 0.4})
    assert stamped.status_code == 200
    page = PdfReader(io.BytesIO(stamped.content)).pages[0]
    assert b"doc@example.com" in page.get_contents().get_data()

    # bad watermark parameters never block the download
    fallback = client.get(f"/api/labs/{report_id}/pdf", params={"watermark": "spiral"})
    assert fallback.content == original


def test_download_unknown_report(client):
    r = client.get("/api/labs/missing/pdf")
    assert r.status_code == 404
    assert r.json()["message"] == "Lab report not found"


def test_medical_record_json(client, db, patient, consultation):
    day = datetime(2024, 5, 10, 8, 0)
    add_report(db, patient, day, [{"test": "Glucosa", "value": "110", "range": "70-100"}])
    add_report(db, patient, day.replace(hour=12), [{"test": "Glucosa", "value": "110", "range": "70-100"}])

    r = client.get(
        "/api/reports/medical-record.json",
        params={"patient_id": patient.id, "from": "2024-05-01", "to": "2024-05-31"},
    )
    assert r.status_code == 200
    assert r.headers["cache-control"] == "no-store"
    body = r.json()
    assert body["counts"] == {
        "consultations": 1,
        "labResults": 2,
        "labValues": 1,
        "abnormalLabValues": 1,
        "documents": 0,
    }
    assert len(body["labValues"]) == body["counts"]["labValues"]
    assert body["patient"]["firstName"] == "Ana"


def test_medical_record_errors(client, patient):
    r = client.get("/api/reports/medical-record.json", params={"patient_id": "nope"})
    assert r.status_code == 404

    r = client.get(
        "/api/reports/medical-record.json",
        params={"patient_id": patient.id, "from": "2024-06-01", "to": "2024-05-01"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "BAD_REQUEST"


def test_medical_record_pdf(client, db, patient, consultation):
    add_report(db, patient, datetime(2024, 5, 10), [{"test": "Colesterol", "value": "245", "flag": "alto"}])

    r = client.get(
        "/api/reports/medical-record.pdf",
        params={"patient_id": patient.id, "from": "2024-05-01", "to": "2024-05-31", "mode": "full", "watermark": "grid"},
    )
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["cache-control"] == "no-store"
    assert 'filename="medical_record_2024-05-01_2024-05-31.pdf"' in r.headers["content-disposition"]

    reader = PdfReader(io.BytesIO(r.content))
    text = "\n".join(page.extract_text() or "" for page in reader.pages)
    assert "Laboratory Results" in text
    assert "Colesterol" in text
    assert all(b"doc@example.com" in page.get_contents().get_data() for page in reader.pages)


def test_medical_record_pdf_rejects_unknown_mode(client, patient):
    r = client.get("/api/reports/medical-record.pdf", params={"patient_id": patient.id, "mode": "everything"})
    assert r.status_code == 400
    assert r.json()["message"] == "Unsupported mode: everything"


def test_exports_require_clinician_role(client, patient, monkeypatch):
    staff = SimpleNamespace(id="user-2", email="desk@example.com", name="Front Desk", role="staff")
    monkeypatch.setitem(app.dependency_overrides, get_current_user, lambda: staff)

    r = client.get("/api/reports/medical-record.json", params={"patient_id": patient.id})
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"
    assert client.get(f"/api/records/timeline/{patient.id}").status_code == 403


def test_timeline(client, db, patient, consultation, pdf_factory):
    upload(client, patient.id, pdf_factory([LAB_LINES]))

    r = client.get(f"/api/records/timeline/{patient.id}")
    assert r.status_code == 200
    body = r.json()
    assert body["patient_id"] == patient.id
    kinds = [item["kind"] for item in body["items"]]
    assert kinds[0] == "consultation"
    assert sorted(kinds) == ["consultation", "document", "lab"]
    lab = next(item for item in body["items"] if item["kind"] == "lab")
    assert lab["abnormalCount"] == 2

    assert client.get("/api/records/timeline/nope").status_code == 404


def test_trace_id_is_echoed(client):
    r = client.get("/api/health", headers={"x-trace-id": "abc123"})
    assert r.status_code == 200
    assert r.headers["x-trace-id"] == "abc123"

    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"
    assert r.json()["trace_id"] == r.headers["x-trace-id"]


def test_bearer_token_resolves_user(client, db, patient, monkeypatch):
    monkeypatch.delitem(app.dependency_overrides, get_current_user)
    db.add(User(email="real@example.com", name="Dr. Real", role="doctor"))
    db.commit()

    assert client.get(f"/api/records/timeline/{patient.id}").status_code == 401

    token = create_access_token({"sub": "real@example.com"})
    r = client.get(f"/api/records/timeline/{patient.id}", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200

    r = client.get(f"/api/records/timeline/{patient.id}", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid or expired token"
