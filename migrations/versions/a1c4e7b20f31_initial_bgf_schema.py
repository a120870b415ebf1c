"""initial_bgf_schema

Creates the grant request approval tables:
  - users               — dashboard users, one role each, optional staff access code
  - requests            — grant requests with sequential BGF-###### tickets
  - request_workflow    — one approval workflow per request (optimistic version_id)
  - workflow_comments   — append-only discussion thread
  - notifications       — in-app notifications
  - audit_logs          — append-only workflow history

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c4e7b20f31
Revises:
Create Date: 2026-10-18 09:12:44.512301
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c4e7b20f31'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── User ──────────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=40), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("staff_access_code", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
            sa.UniqueConstraint("staff_access_code"),
        )
        op.create_index("ix_users_role", "users", ["role"])

    # ── GrantRequest ──────────────────────────────────────────────────────
    if "requests" not in existing:
        op.create_table(
            "requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_number", sa.String(length=20), nullable=False, comment="BGF-000001"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("request_type", sa.String(length=40), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("requester_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=40), nullable=False, server_default="submitted"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ticket_number"),
        )
        op.create_index("ix_requests_requester_id", "requests", ["requester_id"])
        op.create_index("ix_requests_status", "requests", ["status"])

    # ── RequestWorkflow ───────────────────────────────────────────────────
    if "request_workflow" not in existing:
        assignees = [
            "head_of_programs_id", "assistant_project_officer_id", "project_manager_id",
            "director_id", "ceo_id", "patron_id",
        ]
        op.create_table(
            "request_workflow",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("current_stage", sa.String(length=40), nullable=False, server_default="submission"),
            *[sa.Column(name, sa.Integer(), nullable=True) for name in assignees],
            _ts("submission_date"),
            _ts("hop_review_date"),
            sa.Column("hop_review_notes", sa.Text(), nullable=True),
            _ts("officer_assignment_date"),
            _ts("officer_review_date"),
            sa.Column("officer_review_notes", sa.Text(), nullable=True),
            _ts("hop_final_review_date"),
            sa.Column("hop_final_review_notes", sa.Text(), nullable=True),
            _ts("director_assignment_date"),
            _ts("director_review_date"),
            sa.Column("director_review_notes", sa.Text(), nullable=True),
            _ts("executive_approval_date"),
            sa.Column("executive_approval_notes", sa.Text(), nullable=True),
            sa.Column("ceo_approved", sa.Boolean(), nullable=True),
            sa.Column("ceo_notes", sa.Text(), nullable=True),
            sa.Column("patron_approved", sa.Boolean(), nullable=True),
            sa.Column("patron_notes", sa.Text(), nullable=True),
            sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("disposition", sa.String(length=20), nullable=True),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            *[sa.ForeignKeyConstraint([name], ["users.id"]) for name in assignees],
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id"),
        )
        op.create_index("idx_workflow_stage", "request_workflow", ["current_stage"])
        op.create_index("idx_workflow_updated", "request_workflow", ["updated_at"])
        for name in assignees:
            op.create_index(f"ix_request_workflow_{name}", "request_workflow", [name])

    # ── WorkflowComment ───────────────────────────────────────────────────
    if "workflow_comments" not in existing:
        op.create_table(
            "workflow_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=False),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["workflow_id"], ["request_workflow.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_comments_workflow_id", "workflow_comments", ["workflow_id"])

    # ── Notification ──────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=True),
            sa.Column("related_entity_type", sa.String(length=30), nullable=True),
            sa.Column("related_entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            _ts("read_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_related_entity_id", "notifications", ["related_entity_id"])

    # ── AuditLog ──────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_role", sa.String(length=40), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])


def downgrade():
    for table in (
        "audit_logs", "notifications", "workflow_comments",
        "request_workflow", "requests", "users",
    ):
        op.drop_table(table)
