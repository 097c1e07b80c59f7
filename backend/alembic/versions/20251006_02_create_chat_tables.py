"""create chat rooms and messages

Revision ID: 20251006_02
Revises: 20251006_01
Create Date: 2025-10-06 00:00:01.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20251006_02"
down_revision = "20251006_01"
branch_labels = None
depends_on = None


CHAT_MESSAGE_TYPE = sa.Enum(
    "text",
    "photo",
    "video",
    "ephemeral_photo",
    "ephemeral_video",
    name="chat_message_type",
)


def upgrade() -> None:
    op.create_table(
        "chat_rooms",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("participant1_id", sa.String(length=36), nullable=True),
        sa.Column("participant2_id", sa.String(length=36), nullable=True),
        sa.Column("background", sa.String(length=512), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant1_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["participant2_id"], ["users.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("room_id", sa.String(length=36), nullable=False),
        sa.Column("author_id", sa.String(length=36), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("type", CHAT_MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("is_ephemeral", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["room_id"], ["chat_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_chat_messages_room_created_at", "chat_messages", ["room_id", "created_at"]
    )
    op.create_index(
        "ix_chat_messages_ephemeral_expiry", "chat_messages", ["is_ephemeral", "expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_chat_messages_ephemeral_expiry", table_name="chat_messages")
    op.drop_index("ix_chat_messages_room_created_at", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_table("chat_rooms")

    CHAT_MESSAGE_TYPE.drop(op.get_bind(), checkfirst=False)
