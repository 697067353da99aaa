"""
Crate ledger service tests.

Verifies:
- Returns and adjustments append entries and floor the balance at zero
- Tracking-disabled and unknown products are rejected without writing
- History pagination, balances and summaries
- Replaying deltas from zero reproduces every stored balance
- A writer that read a stale ledger head is retried, not duplicated
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from cellarpos.models import CrateEntry, CrateTransactionType
from cellarpos.services import crate_service, sales_service
from cellarpos.time_utils import business_date
from cellarpos.validation import NotFoundError, StateError, ValidationError


def _entries(db_session, product_id):
    return (
        db_session.query(CrateEntry)
        .filter_by(product_id=product_id)
        .order_by(CrateEntry.sequence.asc())
        .all()
    )


class TestBalance:

    def test_balance_is_zero_without_entries(self, crate_product):
        assert crate_service.get_balance(crate_product.id) == 0

    def test_balance_is_latest_entry(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=7, notes="Opening count", user_id=staff_user.id)
        crate_service.record_return(product_id=crate_product.id, crates_returned=2, user_id=staff_user.id)
        assert crate_service.get_balance(crate_product.id) == 5


class TestRecordReturn:

    def test_return_reduces_balance(self, db_session, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=10, notes="Opening count", user_id=staff_user.id)

        entry = crate_service.record_return(product_id=crate_product.id, crates_returned=4, user_id=staff_user.id)

        assert entry.transaction_type == CrateTransactionType.RETURN
        assert entry.crates_returned == 4
        assert entry.crates_received == 0
        assert entry.balance == 6
        assert entry.balance_delta == -4
        assert entry.sequence == 2
        assert entry.processed_by_user_id == staff_user.id

    def test_return_floors_at_zero(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=2, notes="Opening count", user_id=staff_user.id)

        entry = crate_service.record_return(product_id=crate_product.id, crates_returned=5, user_id=staff_user.id)

        assert entry.balance == 0
        assert entry.balance_delta == -2

    def test_default_note(self, crate_product, staff_user):
        entry = crate_service.record_return(product_id=crate_product.id, crates_returned=3, user_id=staff_user.id)
        assert entry.notes == "Returned 3 empty crates"

    def test_custom_note_kept(self, crate_product, staff_user):
        entry = crate_service.record_return(
            product_id=crate_product.id, crates_returned=1, notes="Collected by EABL truck", user_id=staff_user.id
        )
        assert entry.notes == "Collected by EABL truck"

    @pytest.mark.parametrize("count", [0, -3, "abc", 1.5, None, "\u00b2", 1_000_001, 10**30])
    def test_rejects_non_positive_or_malformed_count(self, db_session, crate_product, staff_user, count):
        with pytest.raises(ValidationError):
            crate_service.record_return(product_id=crate_product.id, crates_returned=count, user_id=staff_user.id)
        assert _entries(db_session, crate_product.id) == []

    def test_rejects_untracked_product(self, db_session, bottle_product, staff_user):
        with pytest.raises(StateError) as exc:
            crate_service.record_return(product_id=bottle_product.id, crates_returned=1, user_id=staff_user.id)
        assert "crate tracking" in exc.value.message
        assert _entries(db_session, bottle_product.id) == []

    def test_rejects_unknown_product(self, db_session, staff_user):
        with pytest.raises(NotFoundError):
            crate_service.record_return(product_id=9999, crates_returned=1, user_id=staff_user.id)


class TestAdjustBalance:

    def test_positive_adjustment_records_received(self, crate_product, staff_user):
        entry = crate_service.adjust_balance(
            product_id=crate_product.id, adjustment=6, notes="Found in back store", user_id=staff_user.id
        )
        assert entry.transaction_type == CrateTransactionType.ADJUSTMENT
        assert entry.crates_received == 6
        assert entry.crates_returned == 0
        assert entry.balance == 6

    def test_negative_adjustment_records_returned(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=6, notes="Count", user_id=staff_user.id)
        entry = crate_service.adjust_balance(
            product_id=crate_product.id, adjustment=-2, notes="Broken crates written off", user_id=staff_user.id
        )
        assert entry.crates_received == 0
        assert entry.crates_returned == 2
        assert entry.balance == 4

    def test_negative_adjustment_floors_at_zero(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=1, notes="Count", user_id=staff_user.id)
        entry = crate_service.adjust_balance(product_id=crate_product.id, adjustment=-10, notes="Recount", user_id=staff_user.id)
        assert entry.balance == 0
        assert entry.balance_delta == -1

    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_notes_required(self, db_session, crate_product, staff_user, notes):
        with pytest.raises(ValidationError) as exc:
            crate_service.adjust_balance(product_id=crate_product.id, adjustment=3, notes=notes, user_id=staff_user.id)
        assert "Notes are required" in exc.value.message
        assert _entries(db_session, crate_product.id) == []

    def test_zero_adjustment_rejected(self, crate_product, staff_user):
        with pytest.raises(ValidationError):
            crate_service.adjust_balance(product_id=crate_product.id, adjustment=0, notes="Nothing", user_id=staff_user.id)

    def test_untracked_product_rejected(self, bottle_product, staff_user):
        with pytest.raises(StateError):
            crate_service.adjust_balance(product_id=bottle_product.id, adjustment=3, notes="x", user_id=staff_user.id)


class TestHistory:

    def test_newest_first_with_pagination(self, crate_product, staff_user):
        for delta in (5, 3, -2):
            crate_service.adjust_balance(product_id=crate_product.id, adjustment=delta, notes="step", user_id=staff_user.id)

        page1 = crate_service.get_history(crate_product.id, page=1, page_size=2)
        assert [e["sequence"] for e in page1["crate_history"]] == [3, 2]
        assert page1["current_balance"] == 6
        assert page1["pagination"]["total"] == 3
        assert page1["pagination"]["total_pages"] == 2
        assert page1["pagination"]["has_next"] is True

        page2 = crate_service.get_history(crate_product.id, page=2, page_size=2)
        assert [e["sequence"] for e in page2["crate_history"]] == [1]
        assert page2["pagination"]["has_prev"] is True

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            crate_service.get_history(424242)


class TestAllBalances:

    def test_only_active_tracked_products(self, product_factory, crate_product, bottle_product, staff_user):
        retired = product_factory(name="Old Crate", has_crate_tracking=True, is_active=False)
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=4, notes="Count", user_id=staff_user.id)

        balances = crate_service.get_all_balances()

        ids = [b["product_id"] for b in balances]
        assert crate_product.id in ids
        assert bottle_product.id not in ids
        assert retired.id not in ids

        row = next(b for b in balances if b["product_id"] == crate_product.id)
        assert row["product_name"] == "Tusker Lager Crate"
        assert row["current_balance"] == 4
        assert row["last_updated"] is not None

    def test_tracked_product_without_entries_reports_zero(self, crate_product):
        balances = crate_service.get_all_balances()
        assert balances == [{
            "product_id": crate_product.id,
            "product_name": crate_product.name,
            "current_balance": 0,
            "last_updated": None,
        }]


class TestSummary:

    def test_aggregates_per_product(self, crate_product, staff_user):
        sale = sales_service.create_sale(
            items=[{"product_id": crate_product.id, "quantity": 5}],
            payment_method="cash",
            user_id=staff_user.id,
        )
        crate_service.record_return(product_id=crate_product.id, crates_returned=3, user_id=staff_user.id)
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=2, notes="Recount", user_id=staff_user.id)
        sales_service.void_sale(sale.id, staff_user.id, "Customer cancelled")

        today = business_date()
        result = crate_service.get_summary(today, today)

        assert result["total_records"] == 4
        [row] = result["summary"]
        assert row["product_id"] == crate_product.id
        assert row["total_received"] == 2
        assert row["total_returned"] == 3
        # +2 manual, then the void takes 4 back down to 0 (floored from -5)
        assert row["net_adjustment"] == 2 - 4
        assert row["current_balance"] == 0

    def test_range_excludes_other_days(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=2, notes="Count", user_id=staff_user.id)
        yesterday = business_date() - timedelta(days=1)

        result = crate_service.get_summary(yesterday, yesterday)

        assert result["summary"] == []
        assert result["total_records"] == 0

    def test_open_range(self, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=2, notes="Count", user_id=staff_user.id)
        assert crate_service.get_summary()["total_records"] == 1

    def test_inverted_range_rejected(self, db_session):
        today = business_date()
        with pytest.raises(ValidationError):
            crate_service.get_summary(today, today - timedelta(days=1))


class TestReplay:

    def test_replay_reproduces_balance_after_mixed_operations(self, db_session, crate_product, staff_user):
        sale = sales_service.create_sale(
            items=[{"product_id": crate_product.id, "quantity": 5}],
            payment_method="mpesa",
            user_id=staff_user.id,
        )
        crate_service.record_return(product_id=crate_product.id, crates_returned=3, user_id=staff_user.id)
        sales_service.void_sale(sale.id, staff_user.id, "Wrong customer")
        crate_service.record_return(product_id=crate_product.id, crates_returned=4, user_id=staff_user.id)
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=3, notes="Recount", user_id=staff_user.id)

        report = crate_service.replay_balance(crate_product.id)

        assert report["consistent"] is True
        assert report["problems"] == []
        assert report["replayed_balance"] == report["stored_balance"] == 3
        assert [e.sequence for e in _entries(db_session, crate_product.id)] == [1, 2, 3, 4, 5]

    def test_verify_flags_tampered_entry(self, db_session, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=5, notes="Count", user_id=staff_user.id)
        entry = _entries(db_session, crate_product.id)[0]
        entry.balance = 9
        db_session.commit()

        [report] = crate_service.verify_ledger()

        assert report["consistent"] is False
        assert report["replayed_balance"] == 5
        assert report["stored_balance"] == 9


class TestConcurrentAppend:

    def test_duplicate_sequence_is_rejected_by_database(self, db_session, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=5, notes="Count", user_id=staff_user.id)

        db_session.add(CrateEntry(
            product_id=crate_product.id,
            sequence=1,
            transaction_type=CrateTransactionType.RETURN,
            crates_returned=1,
            balance=4,
            balance_delta=-1,
            processed_by_user_id=staff_user.id,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_stale_head_is_retried(self, db_session, monkeypatch, crate_product, staff_user):
        crate_service.adjust_balance(product_id=crate_product.id, adjustment=4, notes="Count", user_id=staff_user.id)

        real_head = crate_service._ledger_head
        calls = []

        def stale_then_real(product_id):
            calls.append(product_id)
            if len(calls) == 1:
                # what a concurrent writer would have seen before the first entry committed
                return 0, 1
            return real_head(product_id)

        monkeypatch.setattr(crate_service, "_ledger_head", stale_then_real)

        entry = crate_service.record_return(product_id=crate_product.id, crates_returned=1, user_id=staff_user.id)

        assert len(calls) == 2
        assert entry.sequence == 2
        assert entry.balance == 3
        assert [e.balance for e in _entries(db_session, crate_product.id)] == [4, 3]
