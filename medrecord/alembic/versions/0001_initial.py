"""Initial database schema: staff users, patients, consultations, documents and lab reports."""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, index=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'staff'")),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # address, emergency_contact and the consultation narratives are Fernet tokens (Text)
    op.create_table(
        "patients",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("gender", sa.String(length=20)),
        sa.Column("date_of_birth", sa.Date),
        sa.Column("document_type", sa.String(length=20)),
        sa.Column("document_number", sa.String(length=40), index=True),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("address", sa.Text),
        sa.Column("blood_type", sa.String(length=5)),
        sa.Column("emergency_contact", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "consultations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("patient_id", sa.String(length=36), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("date", sa.DateTime, nullable=False, index=True),
        sa.Column("status", sa.String(length=30)),
        sa.Column("reason", sa.String(length=255)),
        sa.Column("doctor", sa.String(length=120)),
        sa.Column("summary", sa.Text),
        sa.Column("chief_complaint", sa.Text),
        sa.Column("vital_signs", sa.Text),
        sa.Column("physical_exam", sa.Text),
        sa.Column("diagnosis", sa.Text),
        sa.Column("treatment", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "uploaded_documents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("patient_id", sa.String(length=36), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("consultation_id", sa.String(length=36), sa.ForeignKey("consultations.id", ondelete="SET NULL")),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=120), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("path", sa.String(length=512), nullable=False),
        sa.Column("ocr_status", sa.String(length=10), nullable=False),
        sa.Column("parsed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "lab_reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("patient_id", sa.String(length=36), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("consultation_id", sa.String(length=36), sa.ForeignKey("consultations.id", ondelete="SET NULL")),
        sa.Column("document_id", sa.String(length=36), sa.ForeignKey("uploaded_documents.id", ondelete="SET NULL")),
        sa.Column("report_date", sa.DateTime, index=True),
        sa.Column("source", sa.String(length=10), nullable=False),
        sa.Column("summary", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "lab_values",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("report_id", sa.String(length=36), sa.ForeignKey("lab_reports.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("test", sa.String(length=255), nullable=False),
        sa.Column("value", sa.String(length=120), nullable=False),
        sa.Column("unit", sa.String(length=60)),
        sa.Column("range", sa.String(length=120)),
        sa.Column("flag", sa.String(length=40)),
        sa.Column("category", sa.Text),
    )


def downgrade():
    op.drop_table("lab_values")
    op.drop_table("lab_reports")
    op.drop_table("uploaded_documents")
    op.drop_table("consultations")
    op.drop_table("patients")
    op.drop_table("users")
