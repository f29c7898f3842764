"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

This migration creates the complete OffRecord v1 database schema.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  Tables in FK dependency order (users → refresh_tokens → groups →
  memberships → invitations → submissions → feedback_items), then indexes.

ON DELETE policies:
  refresh_tokens.user_id              → CASCADE   (token owned by user)
  groups.host_user_id                 → CASCADE   (a deleted host takes their groups)
  memberships/invitations.group_id    → CASCADE   (owned by the group)
  invitations.redeemed_by_user_id     → SET NULL  (a deleted account frees the slot)
  submissions.*                       → CASCADE
  feedback_items.*                    → CASCADE

The application also deletes group-owned rows explicitly
(group_service.delete_group_cascade), so the result is the same on
databases that ignore ON DELETE.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration, no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    # email is NULL for anonymous sessions; UNIQUE ignores NULLs.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(10), nullable=False, server_default="member"),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column(
            "is_anonymous",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        sa.CheckConstraint(
            "email IS NULL OR email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        sa.CheckConstraint(
            "role IN ('host', 'member')",
            name="ck_users_role",
        ),
    )

    # ── refresh_tokens ─────────────────────────────────────────────────────

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token_hash", name="uq_refresh_tokens_hash"),
    )

    # ── groups ─────────────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "host_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_groups_host"),
            nullable=False,
        ),
        sa.Column("host_email", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── memberships (roster) ───────────────────────────────────────────────

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column(
            "added_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("group_id", "email", name="uq_memberships_group_email"),
    )

    # ── invitations ────────────────────────────────────────────────────────

    op.create_table(
        "invitations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_invitations_group"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("credential", sa.String(16), nullable=False),
        sa.Column(
            "redeemed_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_invitations_redeemer"),
            nullable=True,
        ),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_invitations"),
        sa.UniqueConstraint("group_id", "email", name="uq_invitations_group_email"),
    )

    # ── submissions ────────────────────────────────────────────────────────
    # UNIQUE(group_id, respondent_user_id): at most one submission per
    # respondent per group. Concurrent double submits race on this.

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_submissions_group"),
            nullable=False,
        ),
        sa.Column(
            "respondent_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_submissions_respondent"),
            nullable=False,
        ),
        sa.Column("respondent_email", sa.String(255), nullable=False),
        sa.Column(
            "submitted_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_submissions"),
        sa.UniqueConstraint(
            "group_id",
            "respondent_user_id",
            name="uq_submissions_group_respondent",
        ),
    )

    # ── feedback_items ─────────────────────────────────────────────────────

    op.create_table(
        "feedback_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_feedback_items_group"),
            nullable=False,
        ),
        sa.Column(
            "submission_id",
            sa.Integer(),
            sa.ForeignKey("submissions.id", ondelete="CASCADE", name="fk_feedback_items_submission"),
            nullable=False,
        ),
        sa.Column(
            "respondent_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_feedback_items_respondent"),
            nullable=False,
        ),
        sa.Column("recipient_email", sa.String(255), nullable=False),
        sa.Column("strengths", sa.Text(), nullable=False),
        sa.Column("improvements", sa.Text(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_feedback_items"),
        sa.UniqueConstraint(
            "submission_id",
            "recipient_email",
            name="uq_feedback_items_submission_recipient",
        ),
        sa.CheckConstraint("score > 0", name="ck_feedback_items_score_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(strengths)) > 0 AND LENGTH(TRIM(improvements)) > 0",
            name="ck_feedback_items_text_nonempty",
        ),
    )

    # ── Indexes ────────────────────────────────────────────────────────────

    op.create_index("idx_refresh_tokens_user", "refresh_tokens", ["user_id"])
    op.create_index("idx_groups_host", "groups", ["host_user_id"])
    op.create_index("idx_memberships_group", "memberships", ["group_id"])
    op.create_index("idx_invitations_group", "invitations", ["group_id"])
    # Redemption looks up by email + credential.
    op.create_index("idx_invitations_email", "invitations", ["email"])
    op.create_index("idx_invitations_redeemer", "invitations", ["redeemed_by_user_id"])
    op.create_index("idx_submissions_group", "submissions", ["group_id"])
    op.create_index("idx_submissions_respondent", "submissions", ["respondent_user_id"])
    op.create_index("idx_feedback_items_group", "feedback_items", ["group_id"])
    op.create_index("idx_feedback_items_submission", "feedback_items", ["submission_id"])
    op.create_index("idx_feedback_items_recipient", "feedback_items", ["recipient_email"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    For local development reset only; corrective migrations are preferred
    over rollbacks in production.
    """
    op.drop_index("idx_feedback_items_recipient",  table_name="feedback_items")
    op.drop_index("idx_feedback_items_submission", table_name="feedback_items")
    op.drop_index("idx_feedback_items_group",      table_name="feedback_items")
    op.drop_index("idx_submissions_respondent",    table_name="submissions")
    op.drop_index("idx_submissions_group",         table_name="submissions")
    op.drop_index("idx_invitations_redeemer",      table_name="invitations")
    op.drop_index("idx_invitations_email",         table_name="invitations")
    op.drop_index("idx_invitations_group",         table_name="invitations")
    op.drop_index("idx_memberships_group",         table_name="memberships")
    op.drop_index("idx_groups_host",               table_name="groups")
    op.drop_index("idx_refresh_tokens_user",       table_name="refresh_tokens")

    op.drop_table("feedback_items")
    op.drop_table("submissions")
    op.drop_table("invitations")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
