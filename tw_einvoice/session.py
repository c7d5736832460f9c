"""Caller-side state for scanning the two codes of one invoice.

A scanner hands over one payload at a time, in no particular order. A left code
that still needs its pair, or a right (detail) code scanned on its own, is held
and starts a countdown; the next scan is parsed together with the held code. An
expired hold is dropped, exactly as if `reset()` had been called.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from tw_einvoice.errors import ParseError
from tw_einvoice.log import log_info, log_warn
from tw_einvoice.models import InvoiceRecord
from tw_einvoice.qr import looks_like_detail, looks_like_header, parse_einvoice


class ScanSession:
    def __init__(
        self,
        *,
        second_qr_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if second_qr_timeout_seconds <= 0:
            raise ValueError("second_qr_timeout_seconds must be positive")
        self._timeout = second_qr_timeout_seconds
        self._clock = clock
        self._pending: Optional[str] = None
        self._deadline: Optional[float] = None

    @property
    def pending(self) -> Optional[str]:
        """The held code, or None (expired holds are dropped on access)."""
        self._expire_if_due()
        return self._pending

    def seconds_remaining(self) -> float:
        self._expire_if_due()
        if self._deadline is None:
            return 0.0
        return max(self._deadline - self._clock(), 0.0)

    def reset(self) -> None:
        self._pending = None
        self._deadline = None

    def _hold(self, qr_text: str) -> None:
        self._pending = qr_text
        self._deadline = self._clock() + self._timeout

    def _expire_if_due(self) -> None:
        if self._deadline is not None and self._clock() >= self._deadline:
            log_warn(f"Second QR code not scanned within {self._timeout:g}s; discarding the first one")
            self.reset()

    def scan(self, qr_text: str) -> Optional[InvoiceRecord]:
        """Feed one scanned payload.

        Returns the parsed record, or None when a right (detail) code arrived
        first and is now held for its left code. When `record.need_second_qr` is
        set, the left code of the invoice is held for the next scan.

        Raises `ParseError`; a failed pair keeps the held code so the user can
        scan the other code again.
        """
        first = self.pending
        if first is None:
            if looks_like_detail(qr_text):
                self._hold(qr_text)
                log_info("Right QR code held; waiting for the left QR code")
                return None
            record = parse_einvoice(qr_text)
            header_qr = qr_text
        else:
            try:
                record = parse_einvoice([first, qr_text])
            except ParseError:
                log_warn("Could not pair with the held QR code; it is kept for the next scan")
                raise
            # Same orientation as the pair parser: the new scan is the left code
            # only when the held one is a right code.
            if looks_like_header(qr_text) and looks_like_detail(first):
                header_qr = qr_text
            else:
                header_qr = first
            self.reset()

        if record.need_second_qr:
            self._hold(header_qr)
            log_info("Waiting for the second QR code")
        return record
