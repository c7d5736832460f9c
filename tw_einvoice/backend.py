"""Send parsed invoices to the backend that appends them to the invoice sheet.

The backend expects the record fields plus `timestamp`, `source` and
`items_json`. There is no retry: a failed submission is reported to the caller.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from tw_einvoice.config import Settings
from tw_einvoice.errors import SubmissionError
from tw_einvoice.log import log_info
from tw_einvoice.models import InvoiceRecord


_INVOICE_NO_RE = re.compile(r"^[A-Z]{2}\d{8}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
REQUIRED_FIELDS = ("invoice_number", "invoice_date", "seller_vat", "amount")


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with milliseconds, e.g. 2025-01-03T04:05:06.789Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_submission(record: InvoiceRecord, *, source: str, timestamp: Optional[str] = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"timestamp": timestamp or utc_timestamp(), "source": source}
    payload.update(record.to_dict())
    payload["items_json"] = record.items_json()
    return payload


def validate_submission(payload: Optional[dict[str, Any]]) -> Optional[str]:
    """Return why the backend would reject `payload`, or None if it looks fine."""
    if not payload:
        return "Missing body"
    for key in REQUIRED_FIELDS:
        value = payload.get(key)
        if value is None or value == "":
            return f"Missing field: {key}"
    if not _INVOICE_NO_RE.fullmatch(str(payload["invoice_number"])):
        return "Bad invoice_number"
    if not _ISO_DATE_RE.fullmatch(str(payload["invoice_date"])):
        return "Bad invoice_date (YYYY-MM-DD)"
    amount = payload["amount"]
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        return "Bad amount"
    return None


def submit_invoice(
    record: InvoiceRecord,
    *,
    settings: Settings,
    source: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> dict[str, Any]:
    """POST `record` to `settings.api_endpoint` and return the decoded JSON reply."""
    url = settings.api_endpoint
    if not url:
        raise SubmissionError("EINVOICE_API_ENDPOINT is not set")

    payload = build_submission(record, source=source or settings.source, timestamp=timestamp)
    problem = validate_submission(payload)
    if problem:
        raise SubmissionError(f"Invoice {record.invoice_number or '<unknown>'} not submitted: {problem}")

    headers = {"Content-Type": "application/json"}
    if settings.has_bearer_token:
        headers["Authorization"] = f"Bearer {settings.bearer_token}"

    resp = requests.post(url, json=payload, headers=headers, timeout=settings.http_timeout_seconds)
    resp.raise_for_status()
    data = resp.json()
    log_info(f"Submitted invoice {record.invoice_number}")
    return data if isinstance(data, dict) else {"_raw": data}
