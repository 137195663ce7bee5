"""Material request core schema

Revision ID: 20261018_request_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_request_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "requests",
        sa.Column("rq_code", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="DRAFT"),
        sa.Column("project_id", sa.String(64), nullable=True),
        sa.Column("engineer_id", sa.String(64), nullable=True),
        sa.Column("urgent", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_by", sa.JSON(), nullable=False),
        sa.Column("created_by_uid", sa.String(128), nullable=True),
        sa.Column("from_dept", sa.String(64), nullable=True),
        sa.Column("lines", sa.JSON(), nullable=False),
        sa.Column("line_dept_ids", sa.JSON(), nullable=False),
        sa.Column("activity_log", sa.JSON(), nullable=False),
        sa.Column("read_by", sa.JSON(), nullable=False),
        sa.Column("canceled_at_ms", sa.BigInteger(), nullable=True),
        sa.Column("canceled_by", sa.JSON(), nullable=True),
        sa.Column("updated_at_ms", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("rq_code"),
    )

    with op.batch_alter_table("requests", schema=None) as batch_op:
        batch_op.create_index("ix_requests_status", ["status"], unique=False)
        batch_op.create_index("ix_requests_created_by_uid", ["created_by_uid"], unique=False)
        batch_op.create_index("ix_requests_updated_at_ms", ["updated_at_ms"], unique=False)
        batch_op.create_index("ix_requests_status_updated", ["status", "updated_at_ms"], unique=False)
        batch_op.create_index("ix_requests_from_dept", ["from_dept"], unique=False)

    op.create_table(
        "request_counters",
        sa.Column("counter_id", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("counter_id"),
    )

    op.create_table(
        "items",
        sa.Column("item_code", sa.String(64), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=True),
        sa.Column("name_ar", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_dept_id", sa.String(64), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False, server_default="PCS"),
        sa.Column("allowed_units", sa.JSON(), nullable=False),
        sa.Column("units", sa.JSON(), nullable=False),
        sa.Column("qty", sa.Float(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("item_code"),
    )

    with op.batch_alter_table("items", schema=None) as batch_op:
        batch_op.create_index("ix_items_owner_dept", ["owner_dept_id"], unique=False)

    op.create_table(
        "projects",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=True),
        sa.Column("name_ar", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "engineers",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=True),
        sa.Column("name_ar", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "roles",
        sa.Column("uid", sa.String(128), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("department_ids", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("uid"),
    )

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(128), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_uid", ["uid"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_security_events_uid_type", ["uid", "event_type"], unique=False)


def downgrade():
    op.drop_table("security_events")
    op.drop_table("roles")
    op.drop_table("engineers")
    op.drop_table("projects")
    with op.batch_alter_table("items", schema=None) as batch_op:
        batch_op.drop_index("ix_items_owner_dept")
    op.drop_table("items")
    op.drop_table("request_counters")
    with op.batch_alter_table("requests", schema=None) as batch_op:
        batch_op.drop_index("ix_requests_from_dept")
        batch_op.drop_index("ix_requests_status_updated")
        batch_op.drop_index("ix_requests_updated_at_ms")
        batch_op.drop_index("ix_requests_created_by_uid")
        batch_op.drop_index("ix_requests_status")
    op.drop_table("requests")
