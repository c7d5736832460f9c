"""Scalar decoders shared by the QR parsers.

None of these raise on bad input: scanner noise degrades to a default value
(or to the original text) instead of rejecting a whole invoice.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import unquote


_LEADING_INT_RE = re.compile(r"\s*([+-]?[0-9]+)")
_MALFORMED_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_DATE_SEPARATORS_RE = re.compile(r"[/\-.]")
_ROC_DIGITS_RE = re.compile(r"[0-9]{7}")
_GREGORIAN_DIGITS_RE = re.compile(r"[0-9]{8}")

# Tried in order once the compact ROC/Gregorian forms did not match.
_GENERIC_DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%a, %d %b %Y %H:%M:%S GMT",
)


def to_int(value: Any, default: int = 0) -> int:
    """Parse the leading base-10 integer of `value`; `default` when there is none.

    "42x" -> 42, "3.5" -> 3, " -7" -> -7, "abc" -> default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    m = _LEADING_INT_RE.match(str(value))
    if not m:
        return default
    return int(m.group(1))


def safe_decode(text: str) -> str:
    """Percent-decode `text` as UTF-8, or return it unchanged if it is malformed."""
    s = text or ""
    if "%" not in s:
        return s
    if _MALFORMED_ESCAPE_RE.search(s):
        return s
    try:
        return unquote(s, encoding="utf-8", errors="strict")
    except UnicodeDecodeError:
        return s


def roc_to_gregorian(roc_digits: str) -> str:
    """'1120515' (ROC 112) -> '2023-05-15'. Month/day are copied, not range-checked."""
    year = int(roc_digits[0:3]) + 1911
    return f"{year}-{roc_digits[3:5]}-{roc_digits[5:7]}"


def _parse_generic_date(text: str) -> Optional[date]:
    s = text.strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _GENERIC_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def parse_date(value: Any) -> str:
    """Normalize an invoice date to YYYY-MM-DD.

    Accepts 7-digit ROC (YYYMMDD) and 8-digit Gregorian (YYYYMMDD) dates, with or
    without `/`, `-` or `.` separators, plus a handful of common spelled-out forms.
    Unrecognised input is returned unchanged so a later stage can still look at it.
    """
    if value is None or value == "":
        return ""
    s = str(value)
    clean = _DATE_SEPARATORS_RE.sub("", s).strip()

    if _ROC_DIGITS_RE.fullmatch(clean):
        return roc_to_gregorian(clean)
    if _GREGORIAN_DIGITS_RE.fullmatch(clean):
        return f"{clean[0:4]}-{clean[4:6]}-{clean[6:8]}"

    parsed = _parse_generic_date(s)
    if parsed is None:
        return s
    return parsed.isoformat()


# (codec the bytes were wrongly decoded with, codec they were written in)
_MOJIBAKE_CODECS = (
    ("cp932", "cp950"),
    ("cp932", "big5"),
    ("shift_jis", "cp950"),
    ("shift_jis", "big5"),
    ("latin1", "cp950"),
    ("latin1", "big5"),
    ("latin1", "utf-8"),
)


def clean_qr_text(value: str) -> str:
    """Drop the BOM and non-printable characters a scanner may prepend, then trim."""
    s = (value or "").replace("\ufeff", "")
    return "".join(ch for ch in s if ch.isprintable()).strip()


def _score_readability(text: str) -> tuple[int, int, int]:
    # (han characters, plain ASCII, suspicious characters) in an item name;
    # halfwidth katakana count double since Big5 read as Shift-JIS is full of them
    han = ascii_printable = suspicious = 0
    for ch in text or "":
        o = ord(ch)
        if 0x4E00 <= o <= 0x9FFF:
            han += 1
        elif 0x20 <= o <= 0x7E:
            ascii_printable += 1
        elif 0xFF61 <= o <= 0xFF9F:
            suspicious += 2
        else:
            suspicious += 1
    return han, ascii_printable, suspicious


def fix_mojibake_text_best_effort(text: str) -> str:
    """Return `text` re-decoded as Big5 when that reads better, else unchanged.

    Item names printed by Big5 point-of-sale systems often reach us decoded as
    Shift-JIS (e.g. "､E､GｵLｹ]" for "九二無鉛"). A re-decoded candidate replaces
    the name only if it has more han characters and no more suspicious ones.
    """
    name = (text or "").strip()
    if not name:
        return ""

    han, _ascii, suspicious = _score_readability(name)
    if han >= 2 and suspicious == 0:
        return name

    candidates = [name]
    for misread_as, encoded_as in _MOJIBAKE_CODECS:
        try:
            candidates.append(name.encode(misread_as).decode(encoded_as))
        except (UnicodeEncodeError, UnicodeDecodeError):
            continue

    def _rank(candidate: str) -> tuple[int, int, int, int]:
        c_han, c_ascii, c_suspicious = _score_readability(candidate)
        # on a tie prefer the shorter decode
        return c_han, -c_suspicious, c_ascii, -len(candidate)

    best = max(candidates, key=_rank)
    best_han, _ascii, best_suspicious = _score_readability(best)
    if best_han > han and best_suspicious <= suspicious:
        return best
    return name
