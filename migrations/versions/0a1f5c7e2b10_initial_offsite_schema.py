"""initial offsite schema (users, rbac, projects, approval workflows)

Revision ID: 0a1f5c7e2b10
Revises:
Create Date: 2026-01-12 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0a1f5c7e2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit(prefix=""):
    return [
        sa.Column(f"{prefix}approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(f"{prefix}approved_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    # ---- identity / rbac ----
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(30), nullable=False),
        sa.Column("offsite_id", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_offsite_id", "users", ["offsite_id"], unique=True)

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(120), nullable=False, unique=True),
        sa.Column("name", sa.String(150), nullable=True),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"),
                  primary_key=True),
    )
    op.create_table(
        "sequence_counters",
        sa.Column("category", sa.String(40), primary_key=True),
        sa.Column("seq", sa.BigInteger(), nullable=False, server_default="0"),
    )

    # ---- projects ----
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("geo_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("geo_center_lat", sa.Float(), nullable=True),
        sa.Column("geo_center_lon", sa.Float(), nullable=True),
        sa.Column("geo_radius_m", sa.Float(), nullable=True),
        sa.Column("geo_buffer_m", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("geo_radius_m IS NULL OR geo_radius_m >= 0", name="ck_projects_geo_radius"),
        sa.CheckConstraint("geo_buffer_m IS NULL OR geo_buffer_m >= 0", name="ck_projects_geo_buffer"),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])
    op.create_table(
        "project_members",
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("added_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(40), nullable=False, server_default="general"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    # ---- permits ----
    op.create_table(
        "permits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("task_description", sa.Text(), nullable=False),
        sa.Column("hazard_type", sa.String(100), nullable=False),
        sa.Column("safety_measures", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        *_audit(),
        sa.Column("otp_hash", sa.String(255), nullable=True),
        sa.Column("otp_generated_at", sa.DateTime(), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column("otp_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("work_started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_permits_project_id", "permits", ["project_id"])
    op.create_index("ix_permits_requested_by", "permits", ["requested_by"])
    op.create_index("ix_permits_status", "permits", ["status"])

    # ---- petty cash ----
    op.create_table(
        "petty_cash_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("submitted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(60), nullable=False),
        sa.Column("receipt_url", sa.String(500), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("geo_label", sa.String(255), nullable=True),
        sa.Column("distance_from_site_m", sa.Float(), nullable=True),
        sa.Column("geofence_valid", sa.Boolean(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="PENDING_PM_APPROVAL"),
        *_audit("pm_"),
        *_audit("owner_"),
        sa.Column("rejected_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_petty_cash_amount_positive"),
    )
    op.create_index("ix_petty_cash_expenses_project_id", "petty_cash_expenses", ["project_id"])
    op.create_index("ix_petty_cash_expenses_submitted_by", "petty_cash_expenses", ["submitted_by"])
    op.create_index("ix_petty_cash_expenses_status", "petty_cash_expenses", ["status"])
    op.create_index("ix_petty_cash_expenses_created_at", "petty_cash_expenses", ["created_at"])

    # ---- materials ----
    op.create_table(
        "material_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("material_id", sa.String(60), nullable=False),
        sa.Column("material_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("anomaly_detected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("anomaly_reason", sa.String(255), nullable=True),
        *_audit(),
        sa.Column("rejected_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("quantity >= 0", name="ck_material_requests_quantity"),
    )
    op.create_index("ix_material_requests_project_id", "material_requests", ["project_id"])
    op.create_index("ix_material_requests_requested_by", "material_requests", ["requested_by"])
    op.create_index("ix_material_requests_material_id", "material_requests", ["material_id"])
    op.create_index("ix_material_requests_created_at", "material_requests", ["created_at"])
    op.create_index("ix_material_requests_lookback", "material_requests",
                    ["material_id", "project_id", "status", "created_at"])

    # ---- contractors ----
    op.create_table(
        "contractors",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
                  unique=True),
        sa.Column("company_name", sa.String(200), nullable=True),
        sa.Column("gst_number", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "contractor_contracts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("labour_count_per_day", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rate_per_labour_per_day", sa.Numeric(14, 2), nullable=False),
        sa.Column("gst_rate", sa.Numeric(5, 2), nullable=False, server_default="18"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_contractor_contracts_contractor_id", "contractor_contracts", ["contractor_id"])
    op.create_index("ix_contractor_contracts_project_id", "contractor_contracts", ["project_id"])

    op.create_table(
        "labours",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(20), nullable=False, unique=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("photo_url", sa.String(500), nullable=True),
        sa.Column("face_embedding", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_labours_contractor_id", "labours", ["contractor_id"])

    op.create_table(
        "labour_attendance",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("labour_id", sa.Integer(), sa.ForeignKey("labours.id", ondelete="CASCADE"), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("present", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("face_matched", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("match_score", sa.Float(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("distance_from_site_m", sa.Float(), nullable=True),
        sa.Column("geofence_valid", sa.Boolean(), nullable=True),
        sa.Column("group_photo_url", sa.String(500), nullable=True),
        sa.Column("marked_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("labour_id", "work_date", name="uq_labour_attendance_labour_date"),
    )
    op.create_index("ix_labour_attendance_window", "labour_attendance",
                    ["contractor_id", "project_id", "work_date"])

    op.create_table(
        "contractor_invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(40), nullable=False, unique=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("week_end", sa.Date(), nullable=False),
        sa.Column("labour_days", sa.Integer(), nullable=False),
        sa.Column("blended_rate", sa.Numeric(14, 2), nullable=False),
        sa.Column("taxable_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("gst_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("gst_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="PENDING_PM_APPROVAL"),
        *_audit(),
        sa.Column("rejected_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("visible_to_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("document_url", sa.String(500), nullable=True),
        sa.Column("document_source", sa.String(20), nullable=True),
        sa.Column("document_uploaded_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("document_uploaded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_contractor_invoices_contractor_id", "contractor_invoices", ["contractor_id"])
    op.create_index("ix_contractor_invoices_project_id", "contractor_invoices", ["project_id"])
    op.create_index("ix_contractor_invoices_status", "contractor_invoices", ["status"])


def downgrade() -> None:
    for table in (
        "contractor_invoices", "labour_attendance", "labours", "contractor_contracts", "contractors",
        "material_requests", "petty_cash_expenses", "permits", "notifications",
        "project_members", "projects", "sequence_counters",
        "role_permissions", "user_roles", "permissions", "roles", "users",
    ):
        op.drop_table(table)
