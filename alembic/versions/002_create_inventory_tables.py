"""002: create inventory_items and inventory_movements tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE inventory_items (
            user_id             VARCHAR(64)     NOT NULL,
            item_id             VARCHAR(64)     NOT NULL,
            quantity            INT             NOT NULL DEFAULT 0,
            reserved_quantity   INT             NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_inventory_items           PRIMARY KEY (user_id, item_id),
            CONSTRAINT ck_inventory_reserved_gte_0  CHECK (reserved_quantity >= 0),
            CONSTRAINT ck_inventory_reserved_lte_qty CHECK (reserved_quantity <= quantity)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_inventory_items_updated_at
            BEFORE UPDATE ON inventory_items
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)

    # Append-only audit trail of every inventory leg
    op.execute("""
        CREATE TABLE inventory_movements (
            id              BIGSERIAL       PRIMARY KEY,
            user_id         VARCHAR(64)     NOT NULL,
            item_id         VARCHAR(64)     NOT NULL,
            movement_type   VARCHAR(20)     NOT NULL,
            quantity        INT             NOT NULL,
            reference_type  VARCHAR(30),
            reference_id    VARCHAR(64),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_inventory_movements_type CHECK (
                movement_type IN ('RESERVE', 'RELEASE', 'SETTLE_RESERVED',
                                  'RESTORE_RESERVED', 'DEBIT', 'CREDIT')
            )
        );
    """)
    op.execute(
        "CREATE INDEX idx_inventory_movements_user ON inventory_movements (user_id, id DESC);"
    )
    op.execute(
        "CREATE INDEX idx_inventory_movements_ref ON inventory_movements (reference_type, reference_id);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS inventory_movements;")
    op.execute("DROP TRIGGER IF EXISTS trg_inventory_items_updated_at ON inventory_items;")
    op.execute("DROP TABLE IF EXISTS inventory_items;")
