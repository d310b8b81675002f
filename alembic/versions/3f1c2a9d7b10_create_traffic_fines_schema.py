"""create traffic fines schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-18 09:12:44.381204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# enum labels are the python member names, as SQLAlchemy stores them
role = postgresql.ENUM("DRIVER", "POLICE_OFFICER", "ADMIN", name="role", create_type=False)
currency = postgresql.ENUM("LKR", "USD", "EUR", name="currency", create_type=False)
severity = postgresql.ENUM("MINOR", "LOW", "SEVERE", "DEATH_SEVERE", name="severitylevel", create_type=False)
category = postgresql.ENUM(
    "SPEEDING", "PARKING", "TRAFFIC_SIGNAL", "LANE_VIOLATION", "VEHICLE_CONDITION",
    "DOCUMENTATION", "RECKLESS_DRIVING", "DUI", "OTHER",
    name="violationcategory", create_type=False,
)
fine_status = postgresql.ENUM("PENDING", "PAID", "DISPUTED", "CANCELLED", "OVERDUE", name="finestatus", create_type=False)
vehicle_type = postgresql.ENUM(
    "CAR", "MOTORCYCLE", "BUS", "TRUCK", "VAN", "THREE_WHEELER", "OTHER", name="vehicletype", create_type=False
)
payment_method = postgresql.ENUM("STRIPE", "BANK_TRANSFER", "CASH", "OTHER", name="paymentmethod", create_type=False)
dispute_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="disputestatus", create_type=False)

ENUMS = (role, currency, severity, category, fine_status, vehicle_type, payment_method, dispute_status)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=30), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("role", role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("license_number", sa.String(), nullable=True),
        sa.Column("badge_number", sa.String(), nullable=True),
        sa.Column("street", sa.String(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("province", sa.String(), nullable=True),
        sa.Column("postal_code", sa.String(), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_license_number", "users", ["license_number"])
    op.create_index("ix_users_badge_number", "users", ["badge_number"])

    op.create_table(
        "traffic_violations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("fine_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", currency, nullable=False),
        sa.Column("severity_level", severity, nullable=False),
        sa.Column("category", category, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_traffic_violations_code", "traffic_violations", ["code"], unique=True)
    op.create_index("ix_traffic_violations_severity_level", "traffic_violations", ["severity_level"])
    op.create_index("ix_traffic_violations_category", "traffic_violations", ["category"])
    op.create_index("ix_traffic_violations_is_active", "traffic_violations", ["is_active"])

    op.create_table(
        "fines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fine_id", sa.String(), nullable=False),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("officer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("violation_id", sa.Integer(), sa.ForeignKey("traffic_violations.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", currency, nullable=False),
        sa.Column("violation_message", sa.String(length=1000), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("address", sa.String(length=200), nullable=True),
        sa.Column("city", sa.String(length=50), nullable=True),
        sa.Column("province", sa.String(length=50), nullable=True),
        sa.Column("license_plate", sa.String(), nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("vehicle_make", sa.String(), nullable=True),
        sa.Column("vehicle_model", sa.String(), nullable=True),
        sa.Column("vehicle_color", sa.String(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column("status", fine_status, nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_id", sa.String(), nullable=True),
        sa.Column("payment_method", payment_method, nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("receipt_number", sa.String(), nullable=True),
        sa.Column("receipt_url", sa.String(), nullable=True),
        sa.Column("is_disputed", sa.Boolean(), nullable=False),
        sa.Column("dispute_reason", sa.String(), nullable=True),
        sa.Column("dispute_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_status", dispute_status, nullable=True),
        sa.Column("dispute_resolution", sa.String(), nullable=True),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_fines_fine_id", "fines", ["fine_id"], unique=True)
    op.create_index("ix_fines_driver_id", "fines", ["driver_id"])
    op.create_index("ix_fines_officer_id", "fines", ["officer_id"])
    op.create_index("ix_fines_license_plate", "fines", ["license_plate"])
    op.create_index("ix_fines_status", "fines", ["status"])
    op.create_index("ix_fines_due_date", "fines", ["due_date"])
    op.create_index("ix_fines_created_at", "fines", ["created_at"])

    op.create_table(
        "fine_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fine_id", sa.Integer(), sa.ForeignKey("fines.id"), nullable=False),
        sa.Column("content", sa.String(length=500), nullable=False),
        sa.Column("added_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_fine_notes_fine_id", "fine_notes", ["fine_id"])

    op.create_table(
        "admin_audit",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("admin_audit")
    op.drop_index("ix_fine_notes_fine_id", table_name="fine_notes")
    op.drop_table("fine_notes")
    op.drop_table("fines")
    op.drop_table("traffic_violations")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
