"""freight settlement core: shipments, bids, wallet ledger, idempotency keys

Revision ID: 0001_freight_settlement_core
Revises:
Create Date: 2026-10-17
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_freight_settlement_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ------------------------------------------------------------------
    # shipments
    # ------------------------------------------------------------------
    op.create_table(
        "shipments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),

        sa.Column("shipper_id", sa.String(length=128), nullable=False),
        sa.Column("carrier_id", sa.String(length=128), nullable=True),
        sa.Column("driver_id", sa.String(length=128), nullable=True),

        sa.Column("estimated_cost", sa.Numeric(14, 2), nullable=False),

        sa.Column("pickup_location", sa.String(length=255), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("cargo_type", sa.String(length=64), nullable=True),

        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("previous_status", sa.String(length=16), nullable=True),

        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),

        sa.CheckConstraint("estimated_cost > 0", name="ck_shipment_estimated_cost_positive"),
    )
    op.create_index("ix_shipment_shipper", "shipments", ["shipper_id"])
    op.create_index("ix_shipment_carrier", "shipments", ["carrier_id"])
    op.create_index("ix_shipment_status", "shipments", ["status"])

    # ------------------------------------------------------------------
    # shipment_bids
    # ------------------------------------------------------------------
    op.create_table(
        "shipment_bids",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "shipment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shipments.id", ondelete="CASCADE"),
            nullable=False,
        ),

        sa.Column("trucker_id", sa.String(length=128), nullable=True),
        sa.Column("fleet_manager_id", sa.String(length=128), nullable=True),
        sa.Column("driver_id", sa.String(length=128), nullable=True),

        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("message", sa.String(length=1000), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        sa.CheckConstraint(
            "(trucker_id IS NOT NULL AND fleet_manager_id IS NULL AND driver_id IS NULL)"
            " OR (trucker_id IS NULL AND fleet_manager_id IS NOT NULL AND driver_id IS NOT NULL)",
            name="ck_bid_bidder_identity",
        ),
        sa.CheckConstraint("status IN ('pending', 'accepted', 'rejected')", name="ck_bid_status"),
    )
    op.create_index("ix_bid_shipment", "shipment_bids", ["shipment_id"])
    op.create_index(
        "uq_bid_pending_trucker",
        "shipment_bids",
        ["shipment_id", "trucker_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND trucker_id IS NOT NULL"),
    )
    op.create_index(
        "uq_bid_pending_fleet_driver",
        "shipment_bids",
        ["shipment_id", "fleet_manager_id", "driver_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND fleet_manager_id IS NOT NULL"),
    )
    op.create_index(
        "uq_bid_accepted_per_shipment",
        "shipment_bids",
        ["shipment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )

    # ------------------------------------------------------------------
    # wallet_transactions (append-only, hash-chained per account)
    # ------------------------------------------------------------------
    op.create_table(
        "wallet_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),

        sa.Column("account_id", sa.String(length=128), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=160), nullable=False),

        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default=sa.text("'NGN'")),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),

        sa.Column("shipment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("bid_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payment_stage", sa.String(length=16), nullable=True),

        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),

        sa.Column("prev_hash", sa.String(length=128), nullable=False),
        sa.Column("entry_hash", sa.String(length=128), nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),

        sa.CheckConstraint(
            "(type = 'credit' AND amount > 0) OR (type = 'debit' AND amount < 0)",
            name="ck_wallet_txn_signed_amount",
        ),
        sa.CheckConstraint("status IN ('success', 'failed')", name="ck_wallet_txn_status"),
        sa.UniqueConstraint("account_id", "reference", name="uq_wallet_txn_reference"),
        sa.UniqueConstraint("account_id", "seq", name="uq_wallet_txn_seq"),
    )
    op.create_index("ix_wallet_txn_account", "wallet_transactions", ["account_id"])
    op.create_index("ix_wallet_txn_shipment", "wallet_transactions", ["shipment_id"])
    op.create_index(
        "uq_wallet_txn_stage",
        "wallet_transactions",
        ["account_id", "shipment_id", "bid_id", "payment_stage"],
        unique=True,
        postgresql_where=sa.text("payment_stage IS NOT NULL AND status = 'success'"),
    )

    # DB-level immutability (append-only)
    op.execute(
        """
        CREATE OR REPLACE FUNCTION wallet_txn_block_mutation()
        RETURNS trigger AS $$
        BEGIN
          RAISE EXCEPTION 'wallet_transactions is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_wallet_txn_no_update_delete
        BEFORE UPDATE OR DELETE ON wallet_transactions
        FOR EACH ROW EXECUTE FUNCTION wallet_txn_block_mutation();
        """
    )

    # ------------------------------------------------------------------
    # idempotency_key_records
    # ------------------------------------------------------------------
    op.create_table(
        "idempotency_key_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),

        sa.Column("caller_id", sa.String(length=128), nullable=False),
        sa.Column("endpoint_key", sa.String(length=160), nullable=False),
        sa.Column("idem_key", sa.String(length=128), nullable=False),

        sa.Column("request_hash", sa.String(length=128), nullable=False),

        sa.Column("response_status", sa.String(length=16), nullable=False, server_default=sa.text("'200'")),
        sa.Column("response_json", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),

        sa.UniqueConstraint("caller_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
    )
    op.create_index("ix_idem_lookup", "idempotency_key_records", ["caller_id", "endpoint_key"])


def downgrade():
    op.drop_index("ix_idem_lookup", table_name="idempotency_key_records")
    op.drop_table("idempotency_key_records")

    op.execute("DROP TRIGGER IF EXISTS trg_wallet_txn_no_update_delete ON wallet_transactions;")
    op.execute("DROP FUNCTION IF EXISTS wallet_txn_block_mutation();")
    op.drop_index("uq_wallet_txn_stage", table_name="wallet_transactions")
    op.drop_index("ix_wallet_txn_shipment", table_name="wallet_transactions")
    op.drop_index("ix_wallet_txn_account", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")

    op.drop_index("uq_bid_accepted_per_shipment", table_name="shipment_bids")
    op.drop_index("uq_bid_pending_fleet_driver", table_name="shipment_bids")
    op.drop_index("uq_bid_pending_trucker", table_name="shipment_bids")
    op.drop_index("ix_bid_shipment", table_name="shipment_bids")
    op.drop_table("shipment_bids")

    op.drop_index("ix_shipment_status", table_name="shipments")
    op.drop_index("ix_shipment_carrier", table_name="shipments")
    op.drop_index("ix_shipment_shipper", table_name="shipments")
    op.drop_table("shipments")
