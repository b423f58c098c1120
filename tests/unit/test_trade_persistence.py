# tests/unit/test_trade_persistence.py
"""Unit tests for OfferRepository / TradeHistoryRepository using MagicMock AsyncSession."""
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.el_common.bundle import ItemBundle
from src.el_common.enums import RaterRole, TradeOfferStatus
from src.el_trade.domain.models import ExchangeSnapshot, TradeHistory, TradeOffer
from src.el_trade.infrastructure.persistence import OfferRepository, TradeHistoryRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _make_offer_row(**kwargs):
    row = MagicMock()
    row.id = kwargs.get("id", "101")
    row.owner_id = kwargs.get("owner_id", "alice")
    row.owner_username = kwargs.get("owner_username", "Alice")
    # asyncpg hands JSONB back as text unless a codec is registered
    row.offering_items = kwargs.get("offering_items", '[{"item_id": "wood", "quantity": 10}]')
    row.requesting_items = kwargs.get(
        "requesting_items", [{"item_id": "water_bottle", "quantity": 2}]
    )
    row.status = kwargs.get("status", "active")
    row.message = kwargs.get("message")
    row.created_at = NOW
    row.expires_at = NOW + timedelta(hours=24)
    row.completed_at = kwargs.get("completed_at")
    row.completed_by_user_id = kwargs.get("completed_by_user_id")
    row.completed_by_username = kwargs.get("completed_by_username")
    row.updated_at = NOW
    return row


def _make_history_row(**kwargs):
    row = MagicMock()
    row.id = kwargs.get("id", "501")
    row.offer_id = kwargs.get("offer_id", "101")
    row.seller_id = "alice"
    row.seller_username = "Alice"
    row.buyer_id = "bob"
    row.buyer_username = None
    row.items_exchanged = json.dumps(
        {
            "offered": [{"item_id": "wood", "quantity": 10}],
            "requested": [{"item_id": "water_bottle", "quantity": 2}],
        }
    )
    row.completed_at = NOW
    row.seller_rating = kwargs.get("seller_rating")
    row.seller_comment = None
    row.buyer_rating = kwargs.get("buyer_rating")
    row.buyer_comment = None
    return row


def _result(row=None, rows=None):
    result = MagicMock()
    result.fetchone.return_value = row
    result.fetchall.return_value = rows or []
    return result


@pytest.fixture
def db():
    return MagicMock()


class TestOfferRepository:
    async def test_insert_serializes_bundles(self, db):
        db.execute = AsyncMock(return_value=_result())
        offer = TradeOffer(
            id="101",
            owner_id="alice",
            offering=ItemBundle.of(wood=10),
            requesting=ItemBundle.of(water_bottle=2),
            expires_at=NOW + timedelta(hours=6),
            created_at=NOW,
        )

        await OfferRepository().insert(db, offer)

        params = db.execute.call_args.args[1]
        assert json.loads(params["offering_items"]) == [{"item_id": "wood", "quantity": 10}]
        assert json.loads(params["requesting_items"]) == [
            {"item_id": "water_bottle", "quantity": 2}
        ]
        assert params["status"] == "active"

    async def test_get_by_id_maps_row(self, db):
        db.execute = AsyncMock(return_value=_result(_make_offer_row(message="hi")))

        offer = await OfferRepository().get_by_id(db, "101")

        assert offer is not None
        assert offer.offering == ItemBundle.of(wood=10)
        assert offer.requesting == ItemBundle.of(water_bottle=2)
        assert offer.message == "hi"
        assert offer.is_active

    async def test_get_by_id_missing(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        assert await OfferRepository().get_by_id(db, "999") is None

    async def test_claim_lost_returns_none(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        claimed = await OfferRepository().claim(db, "101", "bob", "Bob", NOW)

        assert claimed is None
        params = db.execute.call_args.args[1]
        assert params == {
            "id": "101", "acceptor_id": "bob", "acceptor_username": "Bob", "now": NOW,
        }

    async def test_claim_returns_completed_offer(self, db):
        row = _make_offer_row(
            status="completed", completed_at=NOW, completed_by_user_id="bob"
        )
        db.execute = AsyncMock(return_value=_result(row))

        claimed = await OfferRepository().claim(db, "101", "bob", None, NOW)

        assert claimed.status == "completed"
        assert claimed.completed_by_user_id == "bob"

    async def test_reopen_passes_status_value(self, db):
        db.execute = AsyncMock(return_value=_result(MagicMock()))

        assert await OfferRepository().reopen(db, "101", TradeOfferStatus.COMPLETED) is True
        assert db.execute.call_args.args[1]["from_status"] == "completed"

    async def test_list_available_filters_viewer(self, db):
        rows = [_make_offer_row(id="103", owner_id="carol"), _make_offer_row(id="102")]
        db.execute = AsyncMock(return_value=_result(rows=rows))

        offers = await OfferRepository().list_available(db, "bob", NOW, "104", 21)

        assert [o.id for o in offers] == ["103", "102"]
        params = db.execute.call_args.args[1]
        assert params == {"viewer_id": "bob", "now": NOW, "cursor_id": "104", "limit": 21}


    async def test_list_by_owner_filters_on_effective_status(self, db):
        db.execute = AsyncMock(return_value=_result(rows=[_make_offer_row()]))

        offers = await OfferRepository().list_by_owner(db, "alice", "expired", NOW, None, 21)

        assert [o.id for o in offers] == ["101"]
        params = db.execute.call_args.args[1]
        assert params == {
            "owner_id": "alice", "status": "expired", "now": NOW, "cursor_id": None, "limit": 21,
        }
        sql = db.execute.call_args.args[0].text
        assert "status = 'active' AND expires_at <= :now" in sql
        assert "status = 'active' AND expires_at > :now" in sql


class TestTradeHistoryRepository:
    async def test_append_serializes_snapshot(self, db):
        db.execute = AsyncMock(return_value=_result())
        record = TradeHistory(
            id="501",
            offer_id="101",
            seller_id="alice",
            buyer_id="bob",
            items_exchanged=ExchangeSnapshot(
                offered=ItemBundle.of(wood=10), requested=ItemBundle.of(water_bottle=2)
            ),
            completed_at=NOW,
        )

        await TradeHistoryRepository().append(db, record)

        params = db.execute.call_args.args[1]
        assert json.loads(params["items_exchanged"]) == {
            "offered": [{"item_id": "wood", "quantity": 10}],
            "requested": [{"item_id": "water_bottle", "quantity": 2}],
        }

    async def test_get_by_id_parses_snapshot_text(self, db):
        db.execute = AsyncMock(return_value=_result(_make_history_row()))

        record = await TradeHistoryRepository().get_by_id(db, "501")

        assert record.items_exchanged.offered == ItemBundle.of(wood=10)
        assert record.role_of("bob") == RaterRole.BUYER

    @pytest.mark.parametrize(
        ("role", "column"),
        [(RaterRole.SELLER, "seller_rating"), (RaterRole.BUYER, "buyer_rating")],
    )
    async def test_set_rating_targets_rater_column(self, db, role, column):
        db.execute = AsyncMock(return_value=_result(_make_history_row(**{column: 4})))

        record = await TradeHistoryRepository().set_rating(db, "501", role, 4, "ok")

        sql = db.execute.call_args.args[0].text
        assert f"SET {column} = :rating" in sql
        assert f"{column} IS NULL" in sql
        assert getattr(record, column) == 4

    async def test_set_rating_already_set_returns_none(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        assert await TradeHistoryRepository().set_rating(
            db, "501", RaterRole.BUYER, 4, None
        ) is None

    async def test_list_by_participant(self, db):
        db.execute = AsyncMock(
            return_value=_result(rows=[_make_history_row(id="502"), _make_history_row()])
        )

        records = await TradeHistoryRepository().list_by_participant(db, "bob", None, 21)

        assert [r.id for r in records] == ["502", "501"]
