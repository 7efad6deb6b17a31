"""Initial recruitment schema.

Revision ID: 001_recruitment_initial
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_recruitment_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _cycle_fk() -> sa.Column:
    return sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "recruitment_cycle"):
        op.create_table(
            "recruitment_cycle",
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("portal_open_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("application_due_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("portal_close_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_recruitment_cycle_slug", "recruitment_cycle", ["slug"], unique=True)
        op.create_index("ix_recruitment_cycle_is_active", "recruitment_cycle", ["is_active"])

    if not _has_table(bind, "application"):
        op.create_table(
            "application",
            _cycle_fk(),
            sa.Column("applicant_email", sa.String(length=255), nullable=False),
            sa.Column("applicant_name", sa.String(length=200), nullable=True),
            sa.Column("track", sa.String(length=20), nullable=True),
            sa.Column("stage", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("answers", sa.JSON(), nullable=False),
            sa.Column("files", sa.JSON(), nullable=False),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_saved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "applicant_email", name="uq_application_cycle_applicant"),
        )
        op.create_index("ix_application_cycle_id", "application", ["cycle_id"])
        op.create_index("ix_application_applicant_email", "application", ["applicant_email"])
        op.create_index("ix_application_stage", "application", ["stage"])

    if not _has_table(bind, "application_question_set"):
        op.create_table(
            "application_question_set",
            _cycle_fk(),
            sa.Column("track", sa.String(length=20), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "track", name="uq_question_set_cycle_track"),
        )
        op.create_index("ix_application_question_set_cycle_id", "application_question_set", ["cycle_id"])

    if not _has_table(bind, "phase_config"):
        op.create_table(
            "phase_config",
            _cycle_fk(),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("scoring_categories", sa.JSON(), nullable=False),
            sa.Column("min_reviewers_required", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("use_zscore_normalization", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("referral_weights", sa.JSON(), nullable=True),
            sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finalized_by", sa.String(length=255), nullable=True),
            sa.Column("cutoff_applied_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cutoff_applied_by", sa.String(length=255), nullable=True),
            sa.Column("cutoff_criteria", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "phase", name="uq_phase_config_cycle_phase"),
        )
        op.create_index("ix_phase_config_cycle_id", "phase_config", ["cycle_id"])

    if not _has_table(bind, "phase_review"):
        op.create_table(
            "phase_review",
            _cycle_fk(),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("application_id", sa.Uuid(), sa.ForeignKey("application.id", ondelete="CASCADE"), nullable=False),
            sa.Column("reviewer_email", sa.String(length=255), nullable=False),
            sa.Column("reviewer_name", sa.String(length=200), nullable=True),
            sa.Column("scores", sa.JSON(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("recommendation", sa.String(length=20), nullable=True),
            sa.Column("referral_signal", sa.String(length=20), nullable=False, server_default="neutral"),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "cycle_id", "phase", "application_id", "reviewer_email", name="uq_phase_review_reviewer"
            ),
        )
        op.create_index("ix_phase_review_cycle_id", "phase_review", ["cycle_id"])
        op.create_index("ix_phase_review_phase", "phase_review", ["phase"])
        op.create_index("ix_phase_review_application_id", "phase_review", ["application_id"])

    if not _has_table(bind, "ranking_generation"):
        op.create_table(
            "ranking_generation",
            _cycle_fk(),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("generated_by", sa.String(length=255), nullable=True),
            sa.Column("entry_count", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "phase", "version", name="uq_ranking_generation_version"),
        )
        op.create_index("ix_ranking_generation_cycle_id", "ranking_generation", ["cycle_id"])

    if not _has_table(bind, "ranked_applicant"):
        op.create_table(
            "ranked_applicant",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column(
                "generation_id", sa.Uuid(),
                sa.ForeignKey("ranking_generation.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("cycle_id", sa.Uuid(), nullable=False),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("application_id", sa.Uuid(), sa.ForeignKey("application.id", ondelete="CASCADE"), nullable=False),
            sa.Column("applicant_email", sa.String(length=255), nullable=False),
            sa.Column("track", sa.String(length=20), nullable=True),
            sa.Column("rank", sa.Integer(), nullable=False),
            sa.Column("track_rank", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="scored"),
            sa.Column("aggregate_score", sa.Float(), nullable=True),
            sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("referral_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("deferral_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("category_scores", sa.JSON(), nullable=False),
            sa.Column("tie_break_key", sa.String(length=100), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "phase", "application_id", name="uq_ranked_applicant"),
        )
        op.create_index("ix_ranked_applicant_generation_id", "ranked_applicant", ["generation_id"])
        op.create_index("ix_ranked_applicant_cycle_id", "ranked_applicant", ["cycle_id"])

    if not _has_table(bind, "phase_decision"):
        op.create_table(
            "phase_decision",
            _cycle_fk(),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("application_id", sa.Uuid(), sa.ForeignKey("application.id", ondelete="CASCADE"), nullable=False),
            sa.Column("track", sa.String(length=20), nullable=True),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("previous_stage", sa.String(length=30), nullable=False),
            sa.Column("new_stage", sa.String(length=30), nullable=False),
            sa.Column("rank", sa.Integer(), nullable=True),
            sa.Column("aggregate_score", sa.Float(), nullable=True),
            sa.Column("performed_by", sa.String(length=255), nullable=True),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_phase_decision_cycle_id", "phase_decision", ["cycle_id"])
        op.create_index("ix_phase_decision_application_id", "phase_decision", ["application_id"])

    if not _has_table(bind, "recruitment_slot"):
        op.create_table(
            "recruitment_slot",
            _cycle_fk(),
            sa.Column("kind", sa.String(length=30), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("host_name", sa.String(length=200), nullable=False),
            sa.Column("host_email", sa.String(length=255), nullable=True),
            sa.Column("location", sa.String(length=300), nullable=True),
            sa.Column("meeting_url", sa.String(length=500), nullable=True),
            sa.Column("for_track", sa.String(length=20), nullable=True),
            sa.Column("max_bookings", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("booked_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("max_bookings >= 1", name="ck_slot_max_bookings"),
            sa.CheckConstraint(
                "booked_count >= 0 AND booked_count <= max_bookings", name="ck_slot_booked_count"
            ),
        )
        op.create_index("ix_recruitment_slot_cycle_id", "recruitment_slot", ["cycle_id"])
        op.create_index(
            "ix_recruitment_slot_cycle_kind_time", "recruitment_slot", ["cycle_id", "kind", "start_time"]
        )

    if not _has_table(bind, "slot_booking"):
        op.create_table(
            "slot_booking",
            _cycle_fk(),
            sa.Column("slot_id", sa.Uuid(), sa.ForeignKey("recruitment_slot.id", ondelete="CASCADE"), nullable=False),
            sa.Column("application_id", sa.Uuid(), sa.ForeignKey("application.id", ondelete="SET NULL"), nullable=True),
            sa.Column("applicant_email", sa.String(length=255), nullable=False),
            sa.Column("applicant_name", sa.String(length=200), nullable=True),
            sa.Column("slot_kind", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="confirmed"),
            sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_by", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_slot_booking_cycle_id", "slot_booking", ["cycle_id"])
        op.create_index("ix_slot_booking_slot_status", "slot_booking", ["slot_id", "status"])
        op.create_index(
            "uq_slot_booking_confirmed_kind",
            "slot_booking",
            ["cycle_id", "applicant_email", "slot_kind"],
            unique=True,
            sqlite_where=sa.text("status = 'confirmed'"),
            postgresql_where=sa.text("status = 'confirmed'"),
        )

    if not _has_table(bind, "recruitment_event"):
        op.create_table(
            "recruitment_event",
            _cycle_fk(),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("location", sa.String(length=300), nullable=True),
            sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("rsvp_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("check_in_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("capacity", sa.Integer(), nullable=True),
            sa.Column("rsvp_count", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_recruitment_event_cycle_id", "recruitment_event", ["cycle_id"])

    if not _has_table(bind, "event_rsvp"):
        op.create_table(
            "event_rsvp",
            sa.Column("event_id", sa.Uuid(), sa.ForeignKey("recruitment_event.id", ondelete="CASCADE"), nullable=False),
            sa.Column("cycle_id", sa.Uuid(), nullable=False),
            sa.Column("applicant_email", sa.String(length=255), nullable=False),
            sa.Column("applicant_name", sa.String(length=200), nullable=True),
            sa.Column("application_id", sa.Uuid(), sa.ForeignKey("application.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("rsvp_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("attended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("photo_ref", sa.String(length=300), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("event_id", "applicant_email", name="uq_event_rsvp_applicant"),
        )
        op.create_index("ix_event_rsvp_event_id", "event_rsvp", ["event_id"])
        op.create_index("ix_event_rsvp_cycle_id", "event_rsvp", ["cycle_id"])

    if not _has_table(bind, "notification_dispatch"):
        op.create_table(
            "notification_dispatch",
            sa.Column("recipient", sa.String(length=255), nullable=False),
            sa.Column("kind", sa.String(length=50), nullable=False),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("subject_type", sa.String(length=50), nullable=True),
            sa.Column("subject_id", sa.Uuid(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notification_dispatch_subject_id", "notification_dispatch", ["subject_id"])
        op.create_index("ix_notification_dispatch_available_at", "notification_dispatch", ["available_at"])

    if not _has_table(bind, "activity"):
        op.create_table(
            "activity",
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("entity_id", sa.Uuid(), nullable=False),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activity_entity_type", "activity", ["entity_type"])
        op.create_index("ix_activity_entity_id", "activity", ["entity_id"])


def downgrade() -> None:
    bind = op.get_bind()
    for table in (
        "activity",
        "notification_dispatch",
        "event_rsvp",
        "recruitment_event",
        "slot_booking",
        "recruitment_slot",
        "phase_decision",
        "ranked_applicant",
        "ranking_generation",
        "phase_review",
        "phase_config",
        "application_question_set",
        "application",
        "recruitment_cycle",
    ):
        if _has_table(bind, table):
            op.drop_table(table)
