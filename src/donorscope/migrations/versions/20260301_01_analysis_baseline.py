"""Analysis engine baseline schema."""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "20260301_01"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
ENTITY_ID = sa.String(length=64)
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create roster, queue, checkpoint, result and detail tables."""

    op.create_table(
        "members",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("chamber", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("party", sa.Text(), nullable=True),
        sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "processing_queue",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("leased_until", TIMESTAMP, nullable=True),
        sa.Column("lease_token", sa.String(length=64), nullable=True),
        sa.Column("enqueued_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_processing_queue_position", "processing_queue", ["position"])

    op.create_table(
        "analysis_checkpoints",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("cycle", sa.Integer(), primary_key=True),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "analysis_results",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("cycle", sa.Integer(), primary_key=True),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("completed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_analysis_results_cycle", "analysis_results", ["cycle"])

    op.create_table(
        "itemized_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_id", ENTITY_ID, nullable=False),
        sa.Column("source_id", sa.Text(), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False),
        sa.Column("donor_key", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=True),
        sa.Column("zip_code", sa.Text(), nullable=True),
        sa.Column("employer", sa.Text(), nullable=True),
        sa.Column("occupation", sa.Text(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("receipt_date", sa.Text(), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index(
        "idx_itemized_transactions_entity_cycle", "itemized_transactions", ["entity_id", "cycle"]
    )
    op.create_index("idx_itemized_transactions_donor", "itemized_transactions", ["donor_key"])

    op.create_table(
        "donor_aggregates",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("cycle", sa.Integer(), primary_key=True),
        sa.Column("donor_key", sa.Text(), primary_key=True),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "collection_metadata",
        sa.Column("entity_id", ENTITY_ID, primary_key=True),
        sa.Column("cycle", sa.Integer(), primary_key=True),
        sa.Column("source_id", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("donor_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("reconciliation", JSON_TYPE, nullable=True),
        sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )


def downgrade() -> None:
    """Drop every analysis table."""

    op.drop_table("collection_metadata")
    op.drop_table("donor_aggregates")
    op.drop_index("idx_itemized_transactions_donor", table_name="itemized_transactions")
    op.drop_index("idx_itemized_transactions_entity_cycle", table_name="itemized_transactions")
    op.drop_table("itemized_transactions")
    op.drop_index("idx_analysis_results_cycle", table_name="analysis_results")
    op.drop_table("analysis_results")
    op.drop_table("analysis_checkpoints")
    op.drop_index("idx_processing_queue_position", table_name="processing_queue")
    op.drop_table("processing_queue")
    op.drop_table("members")
