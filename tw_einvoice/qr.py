"""Taiwan e-invoice (電子發票) QR payload parsing.

One invoice carries one or two QR codes:
- the left (header) code: `number:date:random:sellerVat:amount[:buyerVat]`,
  optionally followed by `**` and an item list;
- the right (detail) code: item entries `name:qty:unit_price:subtotal` or
  `name:price`, separated by `|` or line breaks.

The Ministry of Finance fixed-width left code is recognised as well (see
`tw_einvoice.official`).

Entry point: `parse_einvoice(text)` or `parse_einvoice([code_a, code_b])`. Both
return an `InvoiceRecord` or raise `ParseError`; scanners do not guarantee the
order of the two codes, so the pair is classified before merging.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Sequence, Union

from tw_einvoice import official
from tw_einvoice.decoders import parse_date, safe_decode, to_int
from tw_einvoice.errors import ParseError, ParseErrorKind
from tw_einvoice.items import count_field_separators, parse_items, split_item_lines
from tw_einvoice.log import log_warn
from tw_einvoice.models import InvoiceRecord


_INVOICE_NO_RE = re.compile(r"[A-Z]{2}\d{8}")
SEGMENT_SEPARATOR = "**"
DUAL_RAW_SEPARATOR = "||"
MIN_HEADER_FIELDS = 5


@dataclass(frozen=True)
class SingleQr:
    text: str


@dataclass(frozen=True)
class DualQr:
    first: str
    second: str


QrInput = Union[SingleQr, DualQr]


def _normalize(value: str) -> str:
    return safe_decode(value.strip())


def is_valid_invoice_qr(text: str) -> bool:
    """Cheap structural check run before any field is read."""
    return (
        bool(_INVOICE_NO_RE.search(text))
        or SEGMENT_SEPARATOR in text
        or (":" in text and len(text.split(":")) >= 3)
    )


def looks_like_header(value: Any) -> bool:
    """Left code: has an invoice number plus `:` or `**`."""
    if not isinstance(value, str) or not value:
        return False
    s = _normalize(value)
    return bool(_INVOICE_NO_RE.search(s)) and (":" in s or SEGMENT_SEPARATOR in s)


def looks_like_detail(value: Any) -> bool:
    """Right code: some entry has two or more field separators and no invoice number appears."""
    if not isinstance(value, str) or not value:
        return False
    s = _normalize(value)
    if _INVOICE_NO_RE.search(s):
        return False
    return any(count_field_separators(line) >= 2 for line in split_item_lines(s))


def _invoice_number_field(field: str) -> str:
    s = field.strip()
    if _INVOICE_NO_RE.fullmatch(s):
        return s
    m = _INVOICE_NO_RE.search(s)
    if m:
        return m.group(0)
    if s:
        log_warn(f"Invoice number field does not look like an invoice number: {s!r}")
    return ""


def _record_from_official(payload: official.OfficialPayload, raw: str) -> InvoiceRecord:
    header = payload.header
    return InvoiceRecord(
        invoice_number=header.invoice_number,
        invoice_date=header.invoice_date.isoformat(),
        random_code=header.random_code,
        seller_vat=header.seller_vat,
        buyer_vat=header.buyer_vat,
        amount=header.total_amount,
        items=payload.items,
        raw=raw,
        need_second_qr=payload.needs_continuation,
    )


def parse_single_qr(qr_text: Any) -> InvoiceRecord:
    """Parse one QR payload (usually a left code, possibly with items after `**`)."""
    if not isinstance(qr_text, str) or not qr_text.strip():
        raise ParseError(ParseErrorKind.INVALID_INPUT, "QR payload is empty or not a string")

    text = _normalize(qr_text)
    if not is_valid_invoice_qr(text):
        raise ParseError(ParseErrorKind.INVALID_FORMAT, "Not a Taiwan e-invoice QR payload")

    # The fixed-width layout may contain '**' in its custom area, so check it first.
    official_payload = official.parse_official_payload(text)
    if official_payload is not None:
        return _record_from_official(official_payload, text)

    header, sep, detail = text.partition(SEGMENT_SEPARATOR)
    fields = header.split(":")
    if len(fields) < MIN_HEADER_FIELDS:
        raise ParseError(
            ParseErrorKind.INCOMPLETE_HEADER,
            f"Header has {len(fields)} field(s); need invoice number, date, random code, seller VAT and amount",
        )

    items: tuple = ()
    if not sep:
        need_second_qr = True
    elif detail:
        items = parse_items(detail, repair_names=True)
        need_second_qr = not items
    else:
        # '**' with nothing after it
        need_second_qr = True

    return InvoiceRecord(
        invoice_number=_invoice_number_field(fields[0]),
        invoice_date=parse_date(fields[1]),
        random_code=fields[2],
        seller_vat=fields[3],
        buyer_vat=fields[5] if len(fields) > 5 else "",
        amount=max(to_int(fields[4]), 0),
        items=items,
        raw=text,
        need_second_qr=need_second_qr,
    )


def _merge(header_qr: str, detail_qr: str) -> InvoiceRecord:
    base = parse_single_qr(header_qr)
    raw = f"{header_qr}{DUAL_RAW_SEPARATOR}{detail_qr}"
    detail = _normalize(detail_qr)

    official_payload = official.parse_official_payload(_normalize(header_qr))
    if official_payload is not None:
        if official.is_no_continuation_marker(detail):
            return replace(base, raw=raw)
        extra = official.parse_continuation(detail, base64_names=official_payload.base64_names)
        if not extra:
            log_warn("Right QR code has no readable items; keeping header fields only")
            return replace(base, raw=raw)
        items = base.items + extra
        declared = official_payload.declared_total_items
        return replace(
            base,
            items=items,
            raw=raw,
            need_second_qr=declared is not None and declared > len(items),
        )

    items = parse_items(detail, repair_names=True)
    if not items:
        log_warn("Detail QR code has no readable items; keeping header fields only")
        return replace(base, raw=raw)
    return replace(base, items=items, raw=raw, need_second_qr=False)


def parse_dual_qr(qr_a: Any, qr_b: Any) -> InvoiceRecord:
    """Parse the two codes of one invoice, in either order."""
    a_header = looks_like_header(qr_a)
    b_header = looks_like_header(qr_b)
    a_detail = looks_like_detail(qr_a)
    b_detail = looks_like_detail(qr_b)

    if a_header and b_detail:
        return _merge(qr_a, qr_b)
    if b_header and a_detail:
        return _merge(qr_b, qr_a)

    if a_header and b_header:
        raise ParseError(
            ParseErrorKind.AMBIGUOUS_BOTH_HEADER,
            "Both QR codes look like the left (header) code; scan the right code with the item list",
        )
    if a_detail and b_detail:
        raise ParseError(
            ParseErrorKind.AMBIGUOUS_BOTH_DETAIL,
            "Both QR codes look like the right (detail) code; scan the left code with the invoice number",
        )

    # Neither order is conclusive: assume the codes arrived left then right.
    if not isinstance(qr_b, str):
        raise ParseError(ParseErrorKind.INVALID_INPUT, "Second QR payload is not a string")
    return _merge(qr_a, qr_b)


def parse_einvoice(value: Union[QrInput, str, Sequence[str]]) -> InvoiceRecord:
    """Parse one payload (str / SingleQr) or a pair (2-item list or tuple / DualQr)."""
    if isinstance(value, str):
        value = SingleQr(value)
    elif isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise ParseError(ParseErrorKind.INVALID_INPUT, f"Expected 1 or 2 QR payloads, got {len(value)}")
        value = DualQr(value[0], value[1])

    if isinstance(value, SingleQr):
        return parse_single_qr(value.text)
    if isinstance(value, DualQr):
        return parse_dual_qr(value.first, value.second)
    raise ParseError(ParseErrorKind.INVALID_INPUT, f"Unsupported QR input type: {type(value).__name__}")
