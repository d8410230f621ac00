"""Query workflow: applications, query groups, query items, thread entries

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("app_number", sa.String(64), nullable=False,
                  comment="Unique App.No, looked up case-insensitively"),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("branch", sa.String(120), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending",
                  comment="pending | approved | rejected | under_review | sanctioned"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_applications_app_number", "applications", ["app_number"], unique=True)

    op.create_table(
        "query_groups",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("app_number", sa.String(64), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("branch", sa.String(120), nullable=True),
        sa.Column("branch_code", sa.String(10), nullable=False, server_default="DEF"),
        sa.Column("submitted_by", sa.String(150), nullable=False, server_default="Operations Team"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("target_teams", sa.String(32), nullable=False,
                  comment="Comma-joined subset of: sales, credit"),
    )
    op.create_index("ix_query_groups_app_number", "query_groups", ["app_number"])
    op.create_index("ix_query_groups_app_submitted", "query_groups", ["app_number", "submitted_at"])

    op.create_table(
        "query_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("group_id", sa.String(36), sa.ForeignKey("query_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, comment="Display order within the group"),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending",
                  comment="pending | approved | deferred | otc"),
        sa.Column("marked_for_team", sa.String(8), nullable=False, comment="sales | credit | both"),
        sa.Column("assigned_to", sa.String(150), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(150), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_reason", sa.Text(), nullable=True),
        sa.Column("reverted_by", sa.String(150), nullable=True),
        sa.Column("reverted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revert_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "position", name="uq_query_items_group_position"),
    )
    op.create_index("ix_query_items_group_id", "query_items", ["group_id"])
    op.create_index("ix_query_items_status_team", "query_items", ["status", "marked_for_team"])

    op.create_table(
        "thread_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("item_id", sa.String(36), sa.ForeignKey("query_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, comment="Per-item commit sequence"),
        sa.Column("kind", sa.String(16), nullable=False, comment="message | action | system_notice"),
        sa.Column("action", sa.String(10), nullable=True, comment="approve | defer | otc | revert"),
        sa.Column("actor", sa.String(150), nullable=False),
        sa.Column("actor_team", sa.String(16), nullable=False),
        sa.Column("body", sa.Text(), nullable=True, comment="Remarks for actions, text for messages"),
        sa.Column("assigned_to", sa.String(150), nullable=True),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=True),
        sa.Column("refers_to", sa.String(36), nullable=True, comment="Entry this message corrects"),
        sa.Column("client_request_id", sa.String(64), nullable=True,
                  comment="Caller-supplied idempotency key; a retry with the same key replays"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("item_id", "seq", name="uq_thread_entries_item_seq"),
        sa.UniqueConstraint("item_id", "client_request_id", name="uq_thread_entries_item_request"),
    )
    op.create_index("ix_thread_entries_item_id", "thread_entries", ["item_id"])
    op.create_index("ix_thread_entries_item_ts", "thread_entries", ["item_id", "timestamp", "seq"])


def downgrade():
    op.drop_index("ix_thread_entries_item_ts", table_name="thread_entries")
    op.drop_index("ix_thread_entries_item_id", table_name="thread_entries")
    op.drop_table("thread_entries")
    op.drop_index("ix_query_items_status_team", table_name="query_items")
    op.drop_index("ix_query_items_group_id", table_name="query_items")
    op.drop_table("query_items")
    op.drop_index("ix_query_groups_app_submitted", table_name="query_groups")
    op.drop_index("ix_query_groups_app_number", table_name="query_groups")
    op.drop_table("query_groups")
    op.drop_index("ix_applications_app_number", table_name="applications")
    op.drop_table("applications")
