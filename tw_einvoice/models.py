"""Normalized invoice record produced by the QR parsers."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any


# Column order of the invoice sheet the backend appends to.
SHEET_COLUMNS = [
    "timestamp",
    "source",
    "invoice_number",
    "invoice_date",
    "random_code",
    "seller_vat",
    "buyer_vat",
    "amount",
    "items_json",
    "raw",
]


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: int = 1
    unit_price: int = 0
    subtotal: int = 0


@dataclass(frozen=True)
class InvoiceRecord:
    invoice_number: str = ""
    invoice_date: str = ""
    random_code: str = ""
    seller_vat: str = ""
    buyer_vat: str = ""
    amount: int = 0
    items: tuple[LineItem, ...] = ()
    raw: str = ""
    need_second_qr: bool = False

    def items_json(self) -> str:
        return json.dumps([asdict(it) for it in self.items], ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the wire field names (`needSecondQr`)."""
        return {
            "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date,
            "random_code": self.random_code,
            "seller_vat": self.seller_vat,
            "buyer_vat": self.buyer_vat,
            "amount": self.amount,
            "items": [asdict(it) for it in self.items],
            "raw": self.raw,
            "needSecondQr": self.need_second_qr,
        }

    def to_row(self, *, timestamp: str, source: str) -> list[Any]:
        """Values in SHEET_COLUMNS order."""
        return [
            timestamp,
            source,
            self.invoice_number,
            self.invoice_date,
            self.random_code,
            self.seller_vat,
            self.buyer_vat,
            self.amount,
            self.items_json(),
            self.raw,
        ]
