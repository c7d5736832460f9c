"""Line-item parsing for the detail part of an e-invoice QR payload.

Entries look like `name:qty:unit_price:subtotal` or `name:price`, separated by
`|` or line breaks. Full-width colons (`：`) are accepted as field separators.
"""

from __future__ import annotations

import re
from typing import Optional

from tw_einvoice.decoders import fix_mojibake_text_best_effort, to_int
from tw_einvoice.models import LineItem


_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\|")
_FIELD_SPLIT_RE = re.compile(r"[:：]")


def split_item_lines(text: Optional[str]) -> list[str]:
    """Split a detail blob into trimmed, non-blank entries."""
    if not text:
        return []
    lines = (line.strip() for line in _LINE_SPLIT_RE.split(text))
    return [line for line in lines if line]


def count_field_separators(line: str) -> int:
    return len(_FIELD_SPLIT_RE.findall(line or ""))


def parse_item_line(line: str, *, repair_names: bool = False) -> Optional[LineItem]:
    """Parse one entry; None if it has fewer than two fields."""
    parts = [p.strip() for p in _FIELD_SPLIT_RE.split(line)]
    if len(parts) < 2:
        return None

    name = parts[0]
    if repair_names:
        name = fix_mojibake_text_best_effort(name)

    if len(parts) >= 4:
        return LineItem(
            name=name,
            quantity=to_int(parts[1], 1),
            unit_price=to_int(parts[2], 0),
            subtotal=to_int(parts[3], 0),
        )

    # name:price (a third field, if any, is ignored); quantity is implicitly 1
    price = to_int(parts[1], 0)
    return LineItem(name=name, quantity=1, unit_price=price, subtotal=price)


def parse_items(text: Optional[str], *, repair_names: bool = False) -> tuple[LineItem, ...]:
    """Parse every entry of `text`, in order, skipping blank or one-field lines."""
    items: list[LineItem] = []
    for line in split_item_lines(text):
        item = parse_item_line(line, repair_names=repair_names)
        if item is not None:
            items.append(item)
    return tuple(items)
