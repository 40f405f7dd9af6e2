"""create marketplace ledger tables

Revision ID: 3f9c2a7d1e64
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration creates the settlement ledger:
- users (credits balance) and prompts
- purchases with the partial unique index that allows one pending or
  completed purchase per (user, prompt)
- credit_history, wallets, wallet_transactions, payout_requests
- result_logs and notifications
"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f9c2a7d1e64"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "purchasestatus": ("pending", "completed", "failed", "refunded"),
    "paymentprovider": ("credits", "stripe", "orynth"),
    "credithistorytype": ("bonus", "purchase", "sale", "execution", "refund"),
    "wallettransactiontype": ("purchase_revenue", "payout", "refund"),
    "payoutstatus": ("pending", "processing", "completed", "failed", "cancelled"),
    "bankaccounttype": ("ordinary", "checking"),
    "metrictype": ("time_saved", "revenue", "quality", "other"),
    "notificationtype": ("purchase", "sale", "refund", "result_log", "payout"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        )
    ]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("credits", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "prompts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("short_description", sa.String(500), nullable=True),
        sa.Column("price_jpy", sa.Integer(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price_jpy >= 0", name="ck_prompts_price_non_negative"),
    )
    op.create_index("ix_prompts_id", "prompts", ["id"])
    op.create_index("ix_prompts_owner_id", "prompts", ["owner_id"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "prompt_id",
            sa.Integer(),
            sa.ForeignKey("prompts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("price_at_purchase", sa.Integer(), nullable=False),
        sa.Column("status", _enum("purchasestatus"), nullable=False),
        sa.Column("payment_provider", _enum("paymentprovider"), nullable=False),
        sa.Column("processor_session_id", sa.String(255), nullable=True),
        sa.Column("processor_payment_id", sa.String(255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.String(500), nullable=True),
        sa.Column("clawback_shortfall", sa.Integer(), server_default="0", nullable=False),
        sa.Column("revenue_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("price_at_purchase >= 0", name="ck_purchases_price_non_negative"),
    )
    op.create_index("ix_purchases_id", "purchases", ["id"])
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_prompt_id", "purchases", ["prompt_id"])
    op.create_index("ix_purchases_seller_id", "purchases", ["seller_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    op.create_index("ix_purchases_created_at", "purchases", ["created_at"])
    op.create_index(
        "ix_purchases_processor_session_id", "purchases", ["processor_session_id"], unique=True
    )
    op.create_index("ix_purchases_processor_payment_id", "purchases", ["processor_payment_id"])

    # One pending or completed purchase per (user, prompt)
    op.create_index(
        "uq_purchases_active_user_prompt",
        "purchases",
        ["user_id", "prompt_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'completed')"),
    )

    op.create_table(
        "credit_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", _enum("credithistorytype"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column(
            "purchase_id",
            sa.Integer(),
            sa.ForeignKey("purchases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(updated=False),
    )
    op.create_index("ix_credit_history_id", "credit_history", ["id"])
    op.create_index("ix_credit_history_user_id", "credit_history", ["user_id"])
    op.create_index("ix_credit_history_type", "credit_history", ["type"])
    op.create_index("ix_credit_history_purchase_id", "credit_history", ["purchase_id"])
    op.create_index("ix_credit_history_created_at", "credit_history", ["created_at"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("balance", sa.Integer(), server_default="0", nullable=False),
        sa.Column("pending_balance", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_earned", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_withdrawn", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_wallets_user_id"),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        sa.CheckConstraint("pending_balance >= 0", name="ck_wallets_pending_non_negative"),
    )
    op.create_index("ix_wallets_id", "wallets", ["id"])

    op.create_table(
        "payout_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "wallet_id",
            sa.Integer(),
            sa.ForeignKey("wallets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("fee", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("bank_name", sa.String(100), nullable=False),
        sa.Column("branch_name", sa.String(100), nullable=False),
        sa.Column("account_type", _enum("bankaccounttype"), nullable=False),
        sa.Column("account_number", sa.String(7), nullable=False),
        sa.Column("account_holder", sa.String(100), nullable=False),
        sa.Column("status", _enum("payoutstatus"), nullable=False),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payout_requests_amount_positive"),
        sa.CheckConstraint("net_amount > 0", name="ck_payout_requests_net_positive"),
    )
    op.create_index("ix_payout_requests_id", "payout_requests", ["id"])
    op.create_index("ix_payout_requests_wallet_id", "payout_requests", ["wallet_id"])
    op.create_index("ix_payout_requests_status", "payout_requests", ["status"])
    op.create_index("ix_payout_requests_created_at", "payout_requests", ["created_at"])

    # One pending or processing payout per wallet
    op.create_index(
        "uq_payout_requests_in_flight_wallet",
        "payout_requests",
        ["wallet_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "wallet_id",
            sa.Integer(),
            sa.ForeignKey("wallets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", _enum("wallettransactiontype"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column(
            "purchase_id",
            sa.Integer(),
            sa.ForeignKey("purchases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "payout_request_id",
            sa.Integer(),
            sa.ForeignKey("payout_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(updated=False),
    )
    op.create_index("ix_wallet_transactions_id", "wallet_transactions", ["id"])
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_type", "wallet_transactions", ["type"])
    op.create_index("ix_wallet_transactions_purchase_id", "wallet_transactions", ["purchase_id"])
    op.create_index(
        "ix_wallet_transactions_payout_request_id", "wallet_transactions", ["payout_request_id"]
    )
    op.create_index("ix_wallet_transactions_created_at", "wallet_transactions", ["created_at"])

    op.create_table(
        "result_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "prompt_id",
            sa.Integer(),
            sa.ForeignKey("prompts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("metric_type", _enum("metrictype"), nullable=False),
        sa.Column("metric_value", sa.Float(), nullable=False),
        sa.Column("metric_unit", sa.String(20), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("is_flagged", sa.Boolean(), nullable=False),
        sa.Column("flag_reason", sa.String(500), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_result_logs_id", "result_logs", ["id"])
    op.create_index("ix_result_logs_user_id", "result_logs", ["user_id"])
    op.create_index("ix_result_logs_prompt_id", "result_logs", ["prompt_id"])
    op.create_index("ix_result_logs_metric_type", "result_logs", ["metric_type"])
    op.create_index("ix_result_logs_is_flagged", "result_logs", ["is_flagged"])
    op.create_index("ix_result_logs_created_at", "result_logs", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", _enum("notificationtype"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    for table in (
        "notifications",
        "result_logs",
        "wallet_transactions",
        "payout_requests",
        "wallets",
        "credit_history",
        "purchases",
        "prompts",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
