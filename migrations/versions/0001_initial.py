"""Initial schema for the clinic queue."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _created_updated() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
    ]


def _create_index_if_not_exists(name: str, table: str, columns: str, *, unique: bool = False, where: str = "") -> None:
    kind = "UNIQUE INDEX" if unique else "INDEX"
    clause = f" WHERE {where}" if where else ""
    op.execute(f"CREATE {kind} IF NOT EXISTS {name} ON {table}({columns}){clause}")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "clinics" not in tables:
        op.create_table(
            "clinics",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("walk_in_token_allotment", sa.Integer(), nullable=False, server_default="3"),
            *_created_updated(),
            sa.CheckConstraint("walk_in_token_allotment >= 0", name="ck_clinics_allotment"),
        )

    if "doctors" not in tables:
        op.create_table(
            "doctors",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("clinic_id", sa.Text(), sa.ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True),
            sa.Column("name", sa.Text(), nullable=False, unique=True),
            sa.Column("department", sa.Text(), nullable=True),
            sa.Column("average_consulting_time", sa.Integer(), nullable=True),
            sa.Column("availability_slots", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("leave_slots", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("availability_extensions", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("advance_booking_days", sa.Integer(), nullable=True),
            sa.Column("free_follow_up_days", sa.Integer(), nullable=True),
            *_created_updated(),
        )

    if "patients" not in tables:
        op.create_table(
            "patients",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("age", sa.Integer(), nullable=True),
            sa.Column("sex", sa.Text(), nullable=True),
            sa.Column("clinic_ids", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("visit_history", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("total_appointments", sa.Integer(), nullable=False, server_default="0"),
            *_created_updated(),
        )
    _create_index_if_not_exists("idx_patients_phone", "patients", "phone")

    if "appointments" not in tables:
        op.create_table(
            "appointments",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("clinic_id", sa.Text(), nullable=True),
            sa.Column("doctor", sa.Text(), nullable=False),
            sa.Column("doctor_id", sa.Text(), nullable=True),
            sa.Column("department", sa.Text(), nullable=True),
            sa.Column("patient_id", sa.Text(), sa.ForeignKey("patients.id", ondelete="SET NULL"), nullable=True),
            sa.Column("patient_name", sa.Text(), nullable=True),
            sa.Column("date", sa.Text(), nullable=False),
            sa.Column("time", sa.Text(), nullable=False),
            sa.Column("status", sa.Text(), nullable=False, server_default="Pending"),
            sa.Column("is_skipped", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("booked_via", sa.Text(), nullable=False),
            sa.Column("token_number", sa.Text(), nullable=True),
            sa.Column("numeric_token", sa.Integer(), nullable=True),
            sa.Column("slot_index", sa.Integer(), nullable=True),
            sa.Column("session_index", sa.Integer(), nullable=True),
            sa.Column("treatment", sa.Text(), nullable=True),
            sa.Column("arrive_by", sa.Text(), nullable=True),
            sa.Column("cut_off_time", sa.Text(), nullable=True),
            sa.Column("no_show_time", sa.Text(), nullable=True),
            *_created_updated(),
            sa.CheckConstraint(
                "status IN ('Pending','Confirmed','Completed','Cancelled','No-show')",
                name="ck_appointments_status",
            ),
            sa.CheckConstraint(
                "booked_via IN ('Advanced Booking','Walk-in')",
                name="ck_appointments_booked_via",
            ),
        )
    _create_index_if_not_exists("idx_appointments_day", "appointments", "doctor, date")
    _create_index_if_not_exists("idx_appointments_token", "appointments", "doctor, date, numeric_token", unique=True)
    _create_index_if_not_exists(
        "idx_appointments_slot",
        "appointments",
        "doctor, date, slot_index",
        unique=True,
        where="status NOT IN ('Cancelled','No-show')",
    )

    if "token_sequences" not in tables:
        op.create_table(
            "token_sequences",
            sa.Column("doctor", sa.Text(), primary_key=True),
            sa.Column("date", sa.Text(), primary_key=True),
            sa.Column("last_number", sa.Integer(), nullable=False),
        )

    if "notifications_outbox" not in tables:
        op.create_table(
            "notifications_outbox",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("patient_id", sa.Text(), nullable=False),
            sa.Column("template_kind", sa.Text(), nullable=False),
            sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
            sa.Column("sent_at", sa.Text(), nullable=True),
        )

    if "audit_log" not in tables:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("actor", sa.Text(), nullable=True),
            sa.Column("action", sa.Text(), nullable=False),
            sa.Column("entity", sa.Text(), nullable=True),
            sa.Column("entity_id", sa.Text(), nullable=True),
            sa.Column("ts", sa.Text(), nullable=False),
            sa.Column("result", sa.Text(), nullable=False, server_default="ok"),
            sa.Column("meta_json_redacted", sa.Text(), nullable=False, server_default="{}"),
        )


def downgrade() -> None:
    for table in ("audit_log", "notifications_outbox", "token_sequences", "appointments", "patients", "doctors", "clinics"):
        op.execute(f"DROP TABLE IF EXISTS {table}")
