"""Initial schema for the scheduling core.

Revision ID: 4b7d2c9e1a6f
Revises:
Create Date: 2026-10-18 09:12:41.203518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4b7d2c9e1a6f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

appointment_status = sa.Enum(
    "pending", "confirmed", "in_progress", "completed", "cancelled", "no_show", name="appointmentstatus"
)
consultation_kind = sa.Enum("in_person", "video", "chat", name="consultationkind")
actor_role = sa.Enum("patient", "provider", "admin", name="actorrole")
block_reason = sa.Enum("vacation", "conference", "personal", "emergency", "other", name="blockreason")
event_type = sa.Enum(
    "appointment.booked",
    "appointment.confirmed",
    "appointment.started",
    "appointment.completed",
    "appointment.cancelled",
    "appointment.no_show",
    "appointment.rescheduled",
    "appointment.reminder_due",
    name="eventtype",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("provider_id", sa.String(length=26), primary_key=True),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("consultation_kinds", sa.JSON(), nullable=False),
        sa.Column("fee_in_person", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("fee_video", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("fee_chat", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_appointments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_appointments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("fee_in_person >= 0", name="ck_providers_fee_in_person"),
        sa.CheckConstraint("fee_video >= 0", name="ck_providers_fee_video"),
        sa.CheckConstraint("fee_chat >= 0", name="ck_providers_fee_chat"),
    )

    op.create_table(
        "patients",
        sa.Column("patient_id", sa.String(length=26), primary_key=True),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("total_appointments", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "schedule_templates",
        sa.Column("template_id", sa.String(length=26), primary_key=True),
        sa.Column(
            "provider_id",
            sa.String(length=26),
            sa.ForeignKey("providers.provider_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("buffer_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_slots_per_day", sa.Integer(), nullable=False, server_default="20"),
        *_timestamps(),
        sa.CheckConstraint(
            "slot_duration_minutes BETWEEN 15 AND 120 AND slot_duration_minutes % 15 = 0",
            name="ck_schedule_templates_slot_duration",
        ),
        sa.CheckConstraint("buffer_minutes BETWEEN 0 AND 60", name="ck_schedule_templates_buffer"),
        sa.CheckConstraint("max_slots_per_day BETWEEN 1 AND 50", name="ck_schedule_templates_max_slots"),
    )

    op.create_table(
        "weekly_hours",
        sa.Column("weekly_hours_id", sa.String(length=26), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(length=26),
            sa.ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.String(length=16), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("time_ranges", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("template_id", "day_of_week", name="uq_weekly_hours_day"),
        sa.CheckConstraint(
            "day_of_week IN ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')",
            name="ck_weekly_hours_weekday",
        ),
    )

    op.create_table(
        "schedule_blocks",
        sa.Column("block_id", sa.String(length=26), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(length=26),
            sa.ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("block_date", sa.Date(), nullable=False),
        sa.Column("reason", block_reason, nullable=False, server_default="personal"),
        sa.Column("all_day", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("blocked_times", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_schedule_blocks_template_date", "schedule_blocks", ["template_id", "block_date"])

    op.create_table(
        "schedule_overrides",
        sa.Column("override_id", sa.String(length=26), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(length=26),
            sa.ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("override_date", sa.Date(), nullable=False),
        sa.Column("time_ranges", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("template_id", "override_date", name="uq_schedule_override_date"),
    )

    op.create_table(
        "appointments",
        sa.Column("appointment_id", sa.String(length=26), primary_key=True),
        sa.Column(
            "patient_id",
            sa.String(length=26),
            sa.ForeignKey("patients.patient_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            sa.String(length=26),
            sa.ForeignKey("providers.provider_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("consultation_kind", consultation_kind, nullable=False),
        sa.Column("status", appointment_status, nullable=False, server_default="pending"),
        sa.Column("fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("reason_for_visit", sa.Text(), nullable=False),
        sa.Column("is_follow_up", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "previous_appointment_id",
            sa.String(length=26),
            sa.ForeignKey("appointments.appointment_id", ondelete="SET NULL"),
        ),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("confirmed_by", sa.String(length=26)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", sa.String(length=26)),
        sa.Column("cancelled_by_role", actor_role),
        sa.Column("cancellation_reason", sa.String(length=500)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("call_started_at", sa.DateTime(timezone=True)),
        sa.Column("call_ended_at", sa.DateTime(timezone=True)),
        sa.Column("call_duration_seconds", sa.Integer()),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("ends_at > scheduled_at", name="ck_appointments_time_order"),
        sa.CheckConstraint("duration_minutes BETWEEN 15 AND 120", name="ck_appointments_duration"),
        sa.CheckConstraint("fee >= 0", name="ck_appointments_fee"),
    )
    op.create_index("ix_appointments_provider_scheduled", "appointments", ["provider_id", "scheduled_at"])
    op.create_index(
        "ix_appointments_provider_status_scheduled",
        "appointments",
        ["provider_id", "status", "scheduled_at"],
    )
    op.create_index("ix_appointments_patient_status", "appointments", ["patient_id", "status"])

    op.create_table(
        "outbox_events",
        sa.Column("event_id", sa.String(length=26), primary_key=True),
        sa.Column("event_type", event_type, nullable=False),
        sa.Column("appointment_id", sa.String(length=26), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True)),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
    )
    op.create_index("ix_outbox_events_pending", "outbox_events", ["dispatched_at", "occurred_at"])
    op.create_index("ix_outbox_events_appointment_id", "outbox_events", ["appointment_id"])


def downgrade() -> None:
    op.drop_index("ix_outbox_events_appointment_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_pending", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_appointments_patient_status", table_name="appointments")
    op.drop_index("ix_appointments_provider_status_scheduled", table_name="appointments")
    op.drop_index("ix_appointments_provider_scheduled", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("schedule_overrides")
    op.drop_index("ix_schedule_blocks_template_date", table_name="schedule_blocks")
    op.drop_table("schedule_blocks")
    op.drop_table("weekly_hours")
    op.drop_table("schedule_templates")
    op.drop_table("patients")
    op.drop_table("providers")

    bind = op.get_bind()
    for enum in (event_type, block_reason, actor_role, consultation_kind, appointment_status):
        enum.drop(bind, checkfirst=True)
