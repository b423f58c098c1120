"""003: create trade_offers and trade_history tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE trade_offers (
            id                      VARCHAR(32)     PRIMARY KEY,
            owner_id                VARCHAR(64)     NOT NULL,
            owner_username          VARCHAR(64),
            offering_items          JSONB           NOT NULL,
            requesting_items        JSONB           NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'active',
            message                 VARCHAR(500),
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            expires_at              TIMESTAMPTZ     NOT NULL,
            completed_at            TIMESTAMPTZ,
            completed_by_user_id    VARCHAR(64),
            completed_by_username   VARCHAR(64),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_trade_offers_status CHECK (
                status IN ('active', 'completed', 'cancelled', 'expired')
            ),
            CONSTRAINT ck_trade_offers_expiry CHECK (expires_at > created_at),
            CONSTRAINT ck_trade_offers_offering_array CHECK (
                jsonb_typeof(offering_items) = 'array' AND jsonb_array_length(offering_items) > 0
            ),
            CONSTRAINT ck_trade_offers_requesting_array CHECK (
                jsonb_typeof(requesting_items) = 'array' AND jsonb_array_length(requesting_items) > 0
            ),
            CONSTRAINT ck_trade_offers_completion CHECK (
                (status = 'completed') = (completed_by_user_id IS NOT NULL)
            ),
            CONSTRAINT ck_trade_offers_no_self_trade CHECK (
                completed_by_user_id IS NULL OR completed_by_user_id <> owner_id
            )
        );
    """)
    op.execute(
        "CREATE INDEX idx_trade_offers_owner ON trade_offers (owner_id, status, created_at DESC);"
    )
    op.execute("""
        CREATE INDEX idx_trade_offers_active_expiry
        ON trade_offers (expires_at)
        WHERE status = 'active';
    """)
    op.execute("""
        CREATE TRIGGER trg_trade_offers_updated_at
            BEFORE UPDATE ON trade_offers
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)

    op.execute("""
        CREATE TABLE trade_history (
            id                  VARCHAR(32)     PRIMARY KEY,
            offer_id            VARCHAR(32)     REFERENCES trade_offers (id) ON DELETE SET NULL,
            seller_id           VARCHAR(64)     NOT NULL,
            seller_username     VARCHAR(64),
            buyer_id            VARCHAR(64)     NOT NULL,
            buyer_username      VARCHAR(64),
            items_exchanged     JSONB           NOT NULL,
            completed_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            seller_rating       SMALLINT,
            seller_comment      VARCHAR(500),
            buyer_rating        SMALLINT,
            buyer_comment       VARCHAR(500),
            CONSTRAINT uq_trade_history_offer   UNIQUE (offer_id),
            CONSTRAINT ck_trade_history_parties CHECK (seller_id <> buyer_id),
            CONSTRAINT ck_trade_history_seller_rating CHECK (
                seller_rating IS NULL OR seller_rating BETWEEN 1 AND 5
            ),
            CONSTRAINT ck_trade_history_buyer_rating CHECK (
                buyer_rating IS NULL OR buyer_rating BETWEEN 1 AND 5
            )
        );
    """)
    op.execute(
        "CREATE INDEX idx_trade_history_seller ON trade_history (seller_id, completed_at DESC);"
    )
    op.execute(
        "CREATE INDEX idx_trade_history_buyer ON trade_history (buyer_id, completed_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS trade_history;")
    op.execute("DROP TRIGGER IF EXISTS trg_trade_offers_updated_at ON trade_offers;")
    op.execute("DROP TABLE IF EXISTS trade_offers;")
