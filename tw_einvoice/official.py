"""Ministry of Finance fixed-width QR layout.

The left code printed on e-invoice paper starts with a 77-char block:

  invoiceNumber(10) rocDate(7) random(4) salesHex(8) totalHex(8)
  buyerId(8) sellerId(8) encryption(24)

followed by `:`-separated fields

  customArea : itemsInThisCode : totalItems : encoding : name:qty:price ...

The right code carries the remaining `name:qty:price` triples behind a `**`
marker. Both codes share the 21-char invoice key (number + ROC date + random).
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

from tw_einvoice.decoders import clean_qr_text, fix_mojibake_text_best_effort
from tw_einvoice.models import LineItem


_INVOICE_NO_RE = re.compile(r"^[A-Z]{2}\d{8}$")
_ROC_DATE_RE = re.compile(r"^\d{7}$")
_RANDOM_RE = re.compile(r"^[0-9A-Za-z]{4}$")
_EINV_KEY_ANYWHERE_RE = re.compile(r"([A-Z]{2}\d{8}\d{7}[0-9A-Za-z]{4})")
_HEX_AMOUNT_RE = re.compile(r"[0-9A-Fa-f]{8}")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_NAME_CHAR_RE = re.compile(r"[A-Za-z\u4e00-\u9fff]")

FIXED_BLOCK_MIN_LEN = 53
NO_BUYER_ID = "00000000"
ENCODING_BASE64 = "2"


def find_invoice_key(value: str) -> tuple[str, int] | tuple[None, None]:
    """Return (key, start_index) if an e-invoice key pattern is found."""
    s = clean_qr_text(value)
    if len(s) < 21:
        return None, None

    # Fast path: expected to start at position 0.
    prefix = s[:21]
    inv_no = prefix[:10].upper()
    if _INVOICE_NO_RE.fullmatch(inv_no) and _ROC_DATE_RE.fullmatch(prefix[10:17]) and _RANDOM_RE.fullmatch(prefix[17:21]):
        return inv_no + prefix[10:21], 0

    m = _EINV_KEY_ANYWHERE_RE.search(s)
    if not m:
        return None, None
    return m.group(1), m.start(1)


def roc_yyyymmdd_to_date(roc_yyyymmdd: str) -> date:
    """Convert ROC date string (YYYMMDD) into Gregorian date."""
    s = (roc_yyyymmdd or "").strip()
    if not re.fullmatch(r"\d{7}", s):
        raise ValueError(f"Invalid ROC date (expected 7 digits YYYMMDD): {roc_yyyymmdd!r}")
    return date(int(s[0:3]) + 1911, int(s[3:5]), int(s[5:7]))


def parse_amount_hex(hex_str: str) -> int:
    s = (hex_str or "").strip()
    if not _HEX_AMOUNT_RE.fullmatch(s):
        raise ValueError(f"Invalid amount hex: {hex_str!r}")
    return int(s, 16)


@dataclass(frozen=True)
class OfficialHeader:
    invoice_number: str
    invoice_date: date
    random_code: str
    total_amount: int
    buyer_vat: str
    seller_vat: str


def parse_official_header(block: str) -> Optional[OfficialHeader]:
    """Read the fixed-width block; None if `block` does not follow the layout."""
    s = clean_qr_text(block)
    if len(s) < FIXED_BLOCK_MIN_LEN:
        return None
    key, pos = find_invoice_key(s)
    if key is None or pos != 0:
        return None
    try:
        invoice_date = roc_yyyymmdd_to_date(s[10:17])
        total_amount = parse_amount_hex(s[29:37])
    except ValueError:
        return None

    buyer = s[37:45].strip()
    return OfficialHeader(
        invoice_number=s[:10].upper(),
        invoice_date=invoice_date,
        random_code=s[17:21],
        total_amount=total_amount,
        buyer_vat="" if buyer == NO_BUYER_ID else buyer,
        seller_vat=s[45:53].strip(),
    )


def _looks_like_number(value: str) -> bool:
    return bool(_NUMBER_RE.fullmatch((value or "").strip()))


def _round_int(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decode_base64_name(name: str) -> str:
    try:
        return base64.b64decode(name, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return name


def _triples_from(segments: Sequence[str], start: int, *, base64_names: bool = False) -> list[LineItem]:
    items: list[LineItem] = []
    i = start
    while i + 2 < len(segments):
        name = segments[i]
        if base64_names:
            name = _decode_base64_name(name)
        name = fix_mojibake_text_best_effort(name)
        qty_s = segments[i + 1]
        unit_s = segments[i + 2]

        # Purely-numeric or '*' names are almost always a wrong offset.
        if not name or set(name) <= {"*"} or not _NAME_CHAR_RE.search(name):
            i += 1
            continue
        if _looks_like_number(qty_s) and _looks_like_number(unit_s):
            try:
                qty = Decimal(qty_s)
                unit = Decimal(unit_s)
            except InvalidOperation:
                i += 1
                continue
            items.append(
                LineItem(
                    name=name,
                    quantity=_round_int(qty),
                    unit_price=_round_int(unit),
                    subtotal=_round_int(qty * unit),
                )
            )
            i += 3
            continue
        i += 1
    return items


def _segments(text: str) -> list[str]:
    return [s.strip() for s in (text or "").split(":") if s.strip()]


def extract_items_best_effort(text: str, *, base64_names: bool = False) -> tuple[LineItem, ...]:
    """Find `name:qty:price` triples in `text`, trying the first few offsets.

    There may be metadata segments in front of the items, so the parse that
    yields the most items wins.
    """
    segments = _segments(text)
    if len(segments) < 3:
        return ()

    best: list[LineItem] = []
    for start in range(0, min(len(segments), 12)):
        candidate = _triples_from(segments, start, base64_names=base64_names)
        if len(candidate) > len(best):
            best = candidate
    return tuple(best)


@dataclass(frozen=True)
class OfficialPayload:
    header: OfficialHeader
    items: tuple[LineItem, ...]
    declared_total_items: Optional[int]
    base64_names: bool = False

    @property
    def needs_continuation(self) -> bool:
        if not self.items:
            return True
        return self.declared_total_items is not None and self.declared_total_items > len(self.items)


def parse_official_payload(text: str) -> Optional[OfficialPayload]:
    """Parse a left code in the fixed-width layout; None for any other shape."""
    fields = (text or "").split(":")
    header = parse_official_header(fields[0])
    if header is None:
        return None

    rest = fields[1:]
    if len(rest) >= 4 and rest[1].strip().isdigit() and rest[2].strip().isdigit():
        base64_names = rest[3].strip() == ENCODING_BASE64
        items = _triples_from([s.strip() for s in rest[4:] if s.strip()], 0, base64_names=base64_names)
        return OfficialPayload(
            header=header,
            items=tuple(items),
            declared_total_items=int(rest[2].strip()),
            base64_names=base64_names,
        )

    return OfficialPayload(
        header=header,
        items=extract_items_best_effort(":".join(rest)),
        declared_total_items=None,
    )


def parse_continuation(text: str, *, base64_names: bool = False) -> tuple[LineItem, ...]:
    """Items from a right code (`**` marker followed by triples)."""
    body = clean_qr_text(text).lstrip("*")
    items = _triples_from(_segments(body), 0, base64_names=base64_names)
    if items:
        return tuple(items)
    return extract_items_best_effort(body, base64_names=base64_names)


def is_no_continuation_marker(qr_text: str) -> bool:
    """True if a right code says there is nothing more to read.

    Per common e-invoice paper behavior, the right QR may be blank/whitespace
    or '**' (possibly with padding) when every item fits in the left QR.
    """
    trimmed = (qr_text or "").strip()
    return trimmed == "" or trimmed == "**"
