"""services.ledger（集計ロジック）のユニットテスト"""

import datetime

import pytest

from wedfin.domain.errors import ValidationError
from wedfin.domain.models import (
    AllocationRequest,
    Contributor,
    Expense,
    Gift,
    GiftAllocation,
    PaymentAllocation,
    PaymentStatus,
)
from wedfin.services import ledger


def _expense(expense_id="e1", total=500.0, payments=(), due_date=None, category="venue"):
    return Expense(
        id=expense_id,
        title=f"Expense {expense_id}",
        category=category,
        total_amount=total,
        due_date=due_date,
        payment_allocations=list(payments),
    )


def _payment(payment_id, amount, contributor_id="c1"):
    return PaymentAllocation(
        id=payment_id, contributor_id=contributor_id, amount=amount, date="2026-02-01"
    )


class TestPaidAndRemaining:
    """calculate_paid_amount / calculate_remaining_amount"""

    def test_paid_is_sum_of_allocations(self):
        """支払い額は全支払いの合計"""
        expense = _expense(payments=[_payment("p1", 120), _payment("p2", 80.5)])
        assert ledger.calculate_paid_amount(expense) == pytest.approx(200.5)

    def test_no_payments_is_zero(self):
        """支払いがなければ 0"""
        assert ledger.calculate_paid_amount(_expense()) == 0

    def test_zero_amount_allocations_count_as_zero(self):
        """金額 0 の支払いは合計に影響しない"""
        expense = _expense(payments=[_payment("p1", 0), _payment("p2", 50)])
        assert ledger.calculate_paid_amount(expense) == 50

    def test_remaining_is_total_minus_paid(self):
        expense = _expense(total=500, payments=[_payment("p1", 200)])
        assert ledger.calculate_remaining_amount(expense) == 300

    def test_remaining_is_negative_when_overpaid(self):
        """過払いの場合は負値をそのまま返す"""
        expense = _expense(total=100, payments=[_payment("p1", 150)])
        assert ledger.calculate_remaining_amount(expense) == -50


class TestPaymentStatus:
    def test_unpaid(self):
        assert ledger.payment_status(_expense()) is PaymentStatus.UNPAID

    def test_partially_paid(self):
        expense = _expense(total=500, payments=[_payment("p1", 100)])
        assert ledger.payment_status(expense) is PaymentStatus.PARTIALLY_PAID

    def test_paid_when_exactly_covered(self):
        expense = _expense(total=0.3, payments=[_payment("p1", 0.1), _payment("p2", 0.2)])
        assert ledger.payment_status(expense) is PaymentStatus.PAID


class TestBuildLedger:
    """贈与割当から支出側・提供者側のビューが導出されること"""

    def _ledger(self):
        expenses = [
            _expense("e1", total=500, payments=[_payment("p-direct", 50, "c2")]),
            _expense("e2", total=300),
        ]
        contributors = [Contributor(id="c1", name="Mom"), Contributor(id="c2", name="Dad")]
        gifts = [
            Gift(id="g1", amount=400, date="2026-01-10", contributor_id="c1"),
            Gift(id="g2", amount=100, date="2026-01-11", from_person="Aunt May"),
        ]
        allocations = [
            GiftAllocation(id="a1", gift_id="g1", expense_id="e1", amount=200),
            GiftAllocation(id="a2", gift_id="g1", expense_id="e2", amount=100),
            GiftAllocation(id="a3", gift_id="g2", expense_id="e2", amount=100),
            GiftAllocation(id="orphan", gift_id="gone", expense_id="e1", amount=999),
        ]
        return ledger.build_ledger("ws-1", expenses, contributors, gifts, allocations)

    def test_expense_view_includes_gift_funded_payments(self):
        """割当1件ごとに支出側の支払いが合成される"""
        data = self._ledger()
        e1 = next(e for e in data.expenses if e.id == "e1")

        assert [p.id for p in e1.payment_allocations] == ["p-direct", "a1"]
        synthesized = e1.payment_allocations[1]
        assert synthesized.contributor_id == "c1"
        assert synthesized.amount == 200
        assert synthesized.date == "2026-01-10"
        assert synthesized.gift_id == "g1"
        assert synthesized.allocation_id == "a1"
        assert synthesized.is_gift_funded
        assert e1.direct_payments == [e1.payment_allocations[0]]

    def test_orphan_allocations_are_ignored(self):
        """存在しない贈与への割当は支出に反映されない"""
        e1 = next(e for e in self._ledger().expenses if e.id == "e1")
        assert ledger.calculate_paid_amount(e1) == 250

    def test_gift_without_contributor_has_empty_contributor_id(self):
        e2 = next(e for e in self._ledger().expenses if e.id == "e2")
        assert {p.contributor_id for p in e2.payment_allocations} == {"c1", ""}

    def test_contributor_summary(self):
        """提供者ごとの贈与総額・支払い合計・残高"""
        summaries = {s.contributor.id: s for s in self._ledger().contributors}

        mom = summaries["c1"]
        assert [g.gift.id for g in mom.gifts] == ["g1"]
        assert mom.total_gift_amount == 400
        assert mom.total_paid == 300
        assert mom.available_balance == 100

        dad = summaries["c2"]
        assert dad.gifts == []
        assert dad.total_paid == 50
        assert dad.available_balance == -50

    def test_gift_view_allocated_amounts(self):
        views = {v.gift.id: v for v in self._ledger().gifts}
        assert views["g1"].allocated_amount == 300
        assert views["g1"].unallocated_amount == 100
        assert views["g2"].unallocated_amount == 0

    def test_defaults_for_categories_and_settings(self):
        data = self._ledger()
        assert data.categories == []
        assert data.settings.currency == "USD"


class TestValidateGift:
    def test_accepts_allocations_within_amount(self):
        ledger.validate_gift(
            200,
            [AllocationRequest("e1", 150), AllocationRequest("e2", 50)],
        )

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError):
            ledger.validate_gift(0, [])

    def test_rejects_non_positive_allocation(self):
        with pytest.raises(ValidationError, match="e1"):
            ledger.validate_gift(100, [AllocationRequest("e1", 0)])

    def test_rejects_allocations_exceeding_gift(self):
        """割当合計が贈与額を超える場合はエラー"""
        with pytest.raises(ValidationError, match="exceed"):
            ledger.validate_gift(
                100, [AllocationRequest("e1", 60), AllocationRequest("e2", 50)]
            )


class TestPaymentWarnings:
    def test_no_warning_within_remaining_and_balance(self):
        expense = _expense(total=500, payments=[_payment("p1", 100)])
        assert ledger.payment_warnings(expense, 400, available_balance=400) == []

    def test_overpayment(self):
        expense = _expense(total=500, payments=[_payment("p1", 100)])
        assert ledger.payment_warnings(expense, 401, None) == [ledger.OVERPAYMENT]

    def test_balance_exceeded(self):
        expense = _expense(total=500)
        assert ledger.payment_warnings(expense, 300, available_balance=200) == [
            ledger.BALANCE_EXCEEDED
        ]

    def test_both_warnings(self):
        expense = _expense(total=100)
        assert ledger.payment_warnings(expense, 150, available_balance=0) == [
            ledger.OVERPAYMENT,
            ledger.BALANCE_EXCEEDED,
        ]

    def test_replaced_amount_restores_remaining(self):
        """既存支払いの編集では置き換え前の金額を残額に戻して判定する"""
        expense = _expense(total=500, payments=[_payment("p1", 500)])
        assert ledger.payment_warnings(expense, 450, None, replaced_amount=500) == []


class TestDashboardStats:
    def test_totals_categories_and_upcoming(self):
        today = datetime.date(2026, 3, 1)
        expenses = [
            _expense("venue", 1000, [_payment("p1", 400)], "2026-06-01", "venue"),
            _expense("cake", 200, [_payment("p2", 200)], "2026-04-01", "food"),
            _expense("flowers", 300, [], "2026-02-01", "decor"),
            _expense("dj", 500, [], "2026-05-01T00:00:00.000Z", "music"),
            _expense("photo", 800, [], None, "photo"),
        ]
        gifts = [Gift(id="g1", amount=250, date="2026-01-01", contributor_id="c1")]
        data = ledger.build_ledger(
            "ws-1", expenses, [Contributor(id="c1", name="Mom")], gifts, []
        )

        stats = ledger.dashboard_stats(data, today)

        assert stats.total_expenses == 2800
        assert stats.total_paid == 600
        assert stats.total_remaining == 2200
        assert stats.total_contributions == 250
        # 期日が今日より後、かつ残額ありのみ（期日順）
        assert [e.id for e in stats.upcoming_payments] == ["dj", "venue"]
        assert stats.expenses_by_category["venue"] == 1000
        assert stats.contributor_payments == {"c1": 600}

    def test_upcoming_is_limited(self):
        expenses = [
            _expense(f"e{i}", 100, [], f"2026-04-{i + 1:02d}") for i in range(8)
        ]
        data = ledger.build_ledger("ws-1", expenses, [], [], [])
        stats = ledger.dashboard_stats(data, datetime.date(2026, 3, 1))
        assert len(stats.upcoming_payments) == ledger.UPCOMING_LIMIT
