"""initial messaging schema

Revision ID: 0001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("account_id", sa.BigInteger(), primary_key=True),
        sa.Column("descope_user_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("profile_pic_url", sa.String(), nullable=True),
        sa.Column("user_type", sa.String(), nullable=False, server_default="seeker"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("user_type IN ('seeker', 'earner')", name="ck_users_user_type"),
    )
    op.create_index("ix_users_account_id", "users", ["account_id"])
    op.create_index("ix_users_descope_user_id", "users", ["descope_user_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "wallets",
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_earnings_minor", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.account_id"]),
        sa.CheckConstraint("credit_balance >= 0", name="ck_wallets_credit_balance_non_negative"),
    )

    op.create_table(
        "wallet_ledger",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("asset", sa.String(), nullable=False),
        sa.Column("delta", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("external_ref_type", sa.String(), nullable=True),
        sa.Column("external_ref_id", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.account_id"]),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_wallet_ledger_id", "wallet_ledger", ["id"])
    op.create_index("ix_wallet_ledger_user_id", "wallet_ledger", ["user_id"])

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seeker_id", sa.BigInteger(), nullable=False),
        sa.Column("earner_id", sa.BigInteger(), nullable=False),
        sa.Column("payer_user_id", sa.BigInteger(), nullable=False),
        sa.Column("user_low_id", sa.BigInteger(), nullable=False),
        sa.Column("user_high_id", sa.BigInteger(), nullable=False),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_credits_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["seeker_id"], ["users.account_id"]),
        sa.ForeignKeyConstraint(["earner_id"], ["users.account_id"]),
        sa.ForeignKeyConstraint(["payer_user_id"], ["users.account_id"]),
        sa.UniqueConstraint("user_low_id", "user_high_id", name="uq_conversation_participants"),
        sa.CheckConstraint("seeker_id <> earner_id", name="ck_conversation_distinct_participants"),
    )
    op.create_index("ix_conversations_id", "conversations", ["id"])
    op.create_index("ix_conversations_seeker_id", "conversations", ["seeker_id"])
    op.create_index("ix_conversations_earner_id", "conversations", ["earner_id"])
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.BigInteger(), nullable=False),
        sa.Column("recipient_id", sa.BigInteger(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(), nullable=False, server_default="text"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("earner_amount_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("platform_fee_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("client_message_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["users.account_id"]),
        sa.ForeignKeyConstraint(["recipient_id"], ["users.account_id"]),
        sa.CheckConstraint("message_type IN ('text', 'image')", name="ck_messages_message_type"),
        sa.CheckConstraint("credits_cost >= 0", name="ck_messages_credits_cost_non_negative"),
        sa.UniqueConstraint(
            "conversation_id", "sender_id", "client_message_id", name="uq_messages_client_message_id"
        ),
    )
    op.create_index("ix_messages_id", "messages", ["id"])
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])
    op.create_index("ix_messages_unread", "messages", ["conversation_id", "recipient_id", "read_at"])

    op.create_table(
        "onesignal_players",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_active", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_failure_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.account_id"]),
    )
    op.create_index("ix_onesignal_players_id", "onesignal_players", ["id"])
    op.create_index("ix_onesignal_players_user_id", "onesignal_players", ["user_id"])
    op.create_index("ix_onesignal_players_player_id", "onesignal_players", ["player_id"], unique=True)


def downgrade():
    op.drop_table("onesignal_players")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("wallet_ledger")
    op.drop_table("wallets")
    op.drop_table("users")
