"""trust core tables
Revision ID: 0001_trust_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_trust_core"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_token", sa.String(length=128), nullable=True, unique=True),
        sa.Column("refresh_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_users_phone", "users", ["phone"])

    op.create_table(
        "deals",
        *_base_columns(),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("amount", sa.String(length=20), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="KZT"),
        sa.Column("status", sa.String(length=100), nullable=True),
    )
    op.create_index("ix_deals_owner_id", "deals", ["owner_id"])

    op.create_table(
        "documents",
        *_base_columns(),
        sa.Column("deal_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doc_type", sa.String(length=100), nullable=False),
        sa.Column("file_path", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('draft', 'under_review', 'approved', 'returned', 'signed')",
            name="ck_documents_status",
        ),
        sa.CheckConstraint(
            "(status = 'signed') = (signed_at IS NOT NULL)",
            name="ck_documents_signed_at",
        ),
    )
    op.create_index("ix_documents_deal_id", "documents", ["deal_id"])
    op.create_index("ix_documents_status", "documents", ["status"])

    op.create_table(
        "document_status_history",
        *_base_columns(),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=False),
        sa.Column("changed_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("via", sa.String(length=20), nullable=False, server_default="manual"),
        sa.Column("comment", sa.String(length=400), nullable=True),
    )
    op.create_index("ix_document_status_history_document_id", "document_status_history", ["document_id"])

    op.create_table(
        "user_verifications",
        *_base_columns(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code_hash", sa.String(length=255), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("attempts >= 0", name="ck_user_verifications_attempts"),
    )
    op.create_index("ix_user_verifications_user_id", "user_verifications", ["user_id"])
    op.create_index("ix_user_verifications_sent_at", "user_verifications", ["sent_at"])

    op.create_table(
        "sms_confirmations",
        *_base_columns(),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sms_confirmations_document_id", "sms_confirmations", ["document_id"])
    op.create_index("ix_sms_confirmations_sent_at", "sms_confirmations", ["sent_at"])
    op.create_index("ix_sms_confirmations_confirmed", "sms_confirmations", ["confirmed"])

    op.create_table(
        "security_audit_log",
        *_base_columns(),
        sa.Column("actor_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_role", sa.String(length=30), nullable=False),
        sa.Column("actor_ip", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("allowed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reason", sa.String(length=400), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
    )
    op.create_index("ix_security_audit_log_created_at", "security_audit_log", ["created_at"])
    op.create_index("ix_security_audit_log_action", "security_audit_log", ["action"])
    op.create_index("ix_security_audit_log_subject", "security_audit_log", ["subject"])
    op.create_index("ix_security_audit_log_actor_user_id", "security_audit_log", ["actor_user_id"])


def downgrade():
    op.drop_table("security_audit_log")
    op.drop_table("sms_confirmations")
    op.drop_table("user_verifications")
    op.drop_table("document_status_history")
    op.drop_table("documents")
    op.drop_table("deals")
    op.drop_table("users")
