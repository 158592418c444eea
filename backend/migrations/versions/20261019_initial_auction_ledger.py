"""Initial auction ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "auctions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("short_name", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("logo", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="setup"),
        sa.Column("admin_can_change_state", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("public_id", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("short_name"),
        sa.UniqueConstraint("public_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("auctions", schema=None) as batch_op:
        batch_op.create_index("ix_auctions_status", ["status"], unique=False)

    op.create_table(
        "bidders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("auction_id", sa.Integer(), nullable=False),
        sa.Column("paddle_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["auction_id"], ["auctions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auction_id", "paddle_number", name="uq_bidders_auction_paddle"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bidders", schema=None) as batch_op:
        batch_op.create_index("ix_bidders_auction_id", ["auction_id"], unique=False)

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("auction_id", sa.Integer(), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("contributor", sa.String(255), nullable=False),
        sa.Column("artist", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("photo", sa.String(255), nullable=True),
        sa.Column("winning_bidder_id", sa.Integer(), nullable=True),
        sa.Column("hammer_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("test_item", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("test_bid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("date", sa.String(32), nullable=True),
        sa.Column("mod_date", sa.String(32), nullable=True),
        sa.ForeignKeyConstraint(["auction_id"], ["auctions.id"]),
        sa.ForeignKeyConstraint(["winning_bidder_id"], ["bidders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auction_id", "item_number", name="uq_items_auction_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("items", schema=None) as batch_op:
        batch_op.create_index("ix_items_auction_id", ["auction_id"], unique=False)
        batch_op.create_index("ix_items_winning_bidder_id", ["winning_bidder_id"], unique=False)
        batch_op.create_index("ix_items_auction_hammer", ["auction_id", "hammer_price"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bidder_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(64), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("provider", sa.String(32), nullable=True),
        sa.Column("provider_txn_id", sa.String(128), nullable=True),
        sa.Column("intent_id", sa.String(64), nullable=True),
        sa.Column("raw_payload", sa.Text(), nullable=True),
        sa.Column("reverses_payment_id", sa.Integer(), nullable=True),
        sa.Column("reversal_reason", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["bidder_id"], ["bidders.id"]),
        sa.ForeignKeyConstraint(["reverses_payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "intent_id", name="uq_payments_provider_intent"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_bidder_id", ["bidder_id"], unique=False)
        batch_op.create_index("ix_payments_method", ["method"], unique=False)
        batch_op.create_index("ix_payments_intent_id", ["intent_id"], unique=False)
        batch_op.create_index("ix_payments_reverses_payment_id", ["reverses_payment_id"], unique=False)

    op.create_table(
        "payment_intents",
        sa.Column("intent_id", sa.String(64), nullable=False),
        sa.Column("bidder_id", sa.Integer(), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sumup_checkout_id", sa.String(128), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["bidder_id"], ["bidders.id"]),
        sa.PrimaryKeyConstraint("intent_id"),
        sa.UniqueConstraint("sumup_checkout_id"),
    )
    with op.batch_alter_table("payment_intents", schema=None) as batch_op:
        batch_op.create_index("ix_payment_intents_bidder_id", ["bidder_id"], unique=False)
        batch_op.create_index("ix_payment_intents_status", ["status"], unique=False)
        batch_op.create_index("ix_payment_intents_status_expires", ["status", "expires_at"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("object_type", sa.String(32), nullable=False),
        sa.Column("object_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_log", schema=None) as batch_op:
        batch_op.create_index("ix_audit_log_object", ["object_type", "object_id"], unique=False)
        batch_op.create_index("ix_audit_log_created_at", ["created_at"], unique=False)


def downgrade():
    op.drop_table("audit_log")
    op.drop_table("payment_intents")
    op.drop_table("payments")
    op.drop_table("items")
    op.drop_table("bidders")
    op.drop_table("auctions")
