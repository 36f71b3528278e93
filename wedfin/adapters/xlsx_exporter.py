"""XLSX Exporter Adapter

家計データを Excel ワークブック（All Expenses / Gifts / Upcoming Payments）に出力する。
"""

from __future__ import annotations

import datetime
import io
import logging

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from wedfin.domain.models import Expense, GiftView, WeddingLedger
from wedfin.domain.ports import SpreadsheetRenderer
from wedfin.services.ledger import (
    calculate_paid_amount,
    calculate_remaining_amount,
    payment_status,
)

logger = logging.getLogger(__name__)

# (見出し, 列幅)
_EXPENSE_COLUMNS = [
    ("Title", 30),
    ("Category", 15),
    ("Total Amount", 15),
    ("Amount Paid", 15),
    ("Remaining", 15),
    ("Due Date", 15),
    ("Provider", 20),
    ("Status", 15),
    ("Contributors", 30),
    ("Notes", 40),
]

_GIFT_COLUMNS = [
    ("From", 30),
    ("Amount", 15),
    ("Date", 15),
    ("Allocated Amount", 20),
    ("Remaining Amount", 20),
    ("Notes", 40),
]

_UPCOMING_COLUMNS = [
    ("Title", 30),
    ("Due Date", 15),
    ("Total Amount", 15),
    ("Remaining Amount", 20),
    ("Status", 15),
    ("Contributors", 30),
    ("Provider", 20),
]


def format_date(value: str | None) -> str:
    """YYYY-MM-DD（時刻付き可）を "Mar 5, 2026" 形式にする"""
    if not value:
        return "N/A"
    try:
        d = datetime.date.fromisoformat(value[:10])
    except ValueError:
        return "Invalid Date"
    return f"{d:%b} {d.day}, {d.year}"


class XlsxExporter(SpreadsheetRenderer):
    """openpyxl によるワークブック生成"""

    def render(self, ledger: WeddingLedger, today: datetime.date) -> bytes:
        names = {s.contributor.id: s.contributor.name for s in ledger.contributors}

        wb = Workbook()
        expenses_sheet = wb.active
        expenses_sheet.title = "All Expenses"
        self._fill(
            expenses_sheet,
            _EXPENSE_COLUMNS,
            [self._expense_row(e, names) for e in ledger.expenses],
        )

        self._fill(
            wb.create_sheet("Gifts"),
            _GIFT_COLUMNS,
            [self._gift_row(v, names) for v in ledger.gifts],
        )

        upcoming = sorted(
            (e for e in ledger.expenses if e.due_date and e.due_date[:10] > today.isoformat()),
            key=lambda e: e.due_date or "",
        )
        self._fill(
            wb.create_sheet("Upcoming Payments"),
            _UPCOMING_COLUMNS,
            [
                [
                    e.title,
                    format_date(e.due_date),
                    e.total_amount,
                    calculate_remaining_amount(e),
                    payment_status(e).value,
                    _contributor_names(e, names),
                    e.provider or "N/A",
                ]
                for e in upcoming
            ],
        )

        buf = io.BytesIO()
        wb.save(buf)
        content = buf.getvalue()
        logger.debug(
            "Rendered workbook: expenses=%d, gifts=%d, upcoming=%d",
            len(ledger.expenses),
            len(ledger.gifts),
            len(upcoming),
        )
        return content

    @staticmethod
    def _fill(sheet, columns: list[tuple[str, int]], rows: list[list]) -> None:
        sheet.append([title for title, _ in columns])
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for i, (_, width) in enumerate(columns, start=1):
            sheet.column_dimensions[get_column_letter(i)].width = width
        for row in rows:
            sheet.append(row)

    @staticmethod
    def _expense_row(expense: Expense, names: dict[str, str]) -> list:
        return [
            expense.title,
            expense.category,
            expense.total_amount,
            calculate_paid_amount(expense),
            calculate_remaining_amount(expense),
            format_date(expense.due_date),
            expense.provider or "N/A",
            payment_status(expense).value,
            _contributor_names(expense, names),
            expense.notes or "",
        ]

    @staticmethod
    def _gift_row(view: GiftView, names: dict[str, str]) -> list:
        gift = view.gift
        return [
            names.get(gift.contributor_id or "", "") or gift.from_person,
            gift.amount,
            format_date(gift.date),
            view.allocated_amount,
            view.unallocated_amount,
            gift.notes or "",
        ]


def _contributor_names(expense: Expense, names: dict[str, str]) -> str:
    seen: list[str] = []
    for payment in expense.payment_allocations:
        name = names.get(payment.contributor_id)
        if name and name not in seen:
            seen.append(name)
    return ", ".join(seen) or "None"
