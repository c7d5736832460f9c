"""Parse Taiwan e-invoice QR payloads and print/export normalized records.

Inputs (pick one)
- payloads on the command line: one (single code) or two (a pair, any order)
- --input: a scan log, one decoded QR payload per line, fed through a scan
  session exactly as a phone scanner would (first code held until its pair)
- --input-csv: a batch table with a `qr_a` column and an optional `qr_b` column

Output columns (same as the invoice sheet):
timestamp, source, invoice_number, invoice_date, random_code, seller_vat,
buyer_vat, amount, items_json, raw

Examples
  poetry run python scripts/parse_invoice_qr.py "AB12345678:1140103:1A2b:12345678:100**Milk:2:30:60"
  poetry run python scripts/parse_invoice_qr.py --input data/invoices/scans.txt --format csv --output out.csv
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd
import requests


# When running `python scripts/parse_invoice_qr.py`, Python sets sys.path[0] to
# the scripts/ directory, not the repository root.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from tw_einvoice.backend import build_submission, submit_invoice, utc_timestamp  # noqa: E402
from tw_einvoice.config import Settings  # noqa: E402
from tw_einvoice.errors import ParseError, ParseErrorKind, SubmissionError  # noqa: E402
from tw_einvoice.log import log_error, log_info, log_warn  # noqa: E402
from tw_einvoice.models import SHEET_COLUMNS, InvoiceRecord  # noqa: E402
from tw_einvoice.qr import parse_einvoice  # noqa: E402
from tw_einvoice.session import ScanSession  # noqa: E402


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parse Taiwan e-invoice QR payloads into invoice records")
    parser.add_argument("payloads", nargs="*", help="One QR payload, or the two payloads of one invoice")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--input", default="", help="Scan log: one decoded QR payload per line")
    source.add_argument("--input-csv", default="", help="CSV with a qr_a column and an optional qr_b column")
    parser.add_argument(
        "--format",
        choices=["json", "csv", "tsv"],
        default="json",
        help="Output format (default: json, one object per line)",
    )
    parser.add_argument("--output", default="", help="Output file path (default: stdout)")
    parser.add_argument("--source", default="", help="Value for the source column (default: $EINVOICE_SOURCE or 'cli')")
    parser.add_argument(
        "--submit",
        action="store_true",
        help="POST complete records to $EINVOICE_API_ENDPOINT",
    )

    # A scan log may end with a left code whose pair never came.
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--allow-single",
        dest="allow_single",
        action="store_true",
        help="Keep records still waiting for their second QR code (default: enabled)",
    )
    group.add_argument(
        "--no-allow-single",
        dest="allow_single",
        action="store_false",
        help="Drop records that never got their second QR code.",
    )
    parser.set_defaults(allow_single=True)
    return parser.parse_args(argv)


def read_scan_log(path: Path) -> list[str]:
    with path.open("r", encoding="utf-8-sig") as f:
        return [line.rstrip("\r\n") for line in f if line.strip()]


def parse_scan_log(lines: Sequence[str], session: ScanSession, *, allow_single: bool = True) -> list[InvoiceRecord]:
    """Feed payloads through `session` in scan order and collect the records."""
    records: list[InvoiceRecord] = []
    held: Optional[InvoiceRecord] = None

    def _flush_held() -> None:
        nonlocal held
        if held is not None and allow_single:
            log_warn(f"Keeping invoice {held.invoice_number or '<unknown>'} without its second QR code")
            records.append(held)
        held = None

    for lineno, line in enumerate(lines, start=1):
        if session.pending is None:
            # nothing held, or the held code's countdown ran out
            _flush_held()
        try:
            try:
                record = session.scan(line)
            except ParseError as e:
                # A new left code while one is held: the old invoice never got its pair.
                if e.kind is not ParseErrorKind.AMBIGUOUS_BOTH_HEADER:
                    raise
                _flush_held()
                session.reset()
                record = session.scan(line)
        except ParseError as e:
            log_warn(f"line {lineno}: {e}")
            continue

        if record is None:
            # a right code, held until its left code shows up
            continue
        if record.need_second_qr:
            held = record
            continue
        held = None
        records.append(record)

    _flush_held()
    return records


def parse_csv_batch(path: Path) -> list[InvoiceRecord]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    if "qr_a" not in df.columns:
        raise RuntimeError(f"{path} has no qr_a column")
    if "qr_b" not in df.columns:
        df["qr_b"] = ""

    records: list[InvoiceRecord] = []
    for idx, row in df.iterrows():
        qr_a = row["qr_a"]
        qr_b = row["qr_b"]
        try:
            record = parse_einvoice([qr_a, qr_b] if qr_b.strip() else qr_a)
        except ParseError as e:
            log_warn(f"row {idx + 2}: {e}")
            continue
        records.append(record)
    return records


def records_to_frame(records: Sequence[InvoiceRecord], *, source: str, timestamp: str) -> pd.DataFrame:
    rows = [rec.to_row(timestamp=timestamp, source=source) for rec in records]
    return pd.DataFrame(rows, columns=SHEET_COLUMNS)


def write_records(records: Sequence[InvoiceRecord], *, fmt: str, output: str, source: str) -> None:
    timestamp = utc_timestamp()
    if fmt == "json":
        lines = [json.dumps(build_submission(rec, source=source, timestamp=timestamp), ensure_ascii=False) for rec in records]
        text = "".join(line + "\n" for line in lines)
        if output:
            Path(output).parent.mkdir(parents=True, exist_ok=True)
            Path(output).write_text(text, encoding="utf-8")
        else:
            sys.stdout.write(text)
        return

    df = records_to_frame(records, source=source, timestamp=timestamp)
    sep = "\t" if fmt == "tsv" else ","
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output, sep=sep, index=False, encoding="utf-8-sig")
    else:
        df.to_csv(sys.stdout, sep=sep, index=False, lineterminator="\n")


def submit_records(records: Sequence[InvoiceRecord], *, settings: Settings, source: str) -> int:
    submitted = 0
    for rec in records:
        if rec.need_second_qr:
            log_warn(f"Not submitting incomplete invoice {rec.invoice_number or '<unknown>'}")
            continue
        try:
            submit_invoice(rec, settings=settings, source=source)
        except (SubmissionError, requests.RequestException) as e:
            log_warn(f"Submit failed for {rec.invoice_number or '<unknown>'}: {e}")
            continue
        submitted += 1
    return submitted


def collect_records(args: argparse.Namespace, settings: Settings) -> list[InvoiceRecord]:
    if args.input:
        path = Path(args.input)
        if not path.is_file():
            raise RuntimeError(f"--input not found: {path}")
        session = ScanSession(second_qr_timeout_seconds=settings.second_qr_timeout_seconds)
        return parse_scan_log(read_scan_log(path), session, allow_single=args.allow_single)

    if args.input_csv:
        path = Path(args.input_csv)
        if not path.is_file():
            raise RuntimeError(f"--input-csv not found: {path}")
        return parse_csv_batch(path)

    if not args.payloads or len(args.payloads) > 2:
        raise RuntimeError("Pass one or two QR payloads, or use --input / --input-csv")
    value = args.payloads[0] if len(args.payloads) == 1 else list(args.payloads)
    try:
        record = parse_einvoice(value)
    except ParseError as e:
        log_warn(str(e))
        return []
    if record.need_second_qr and not args.allow_single:
        log_warn("Record is waiting for its second QR code; dropped (--no-allow-single)")
        return []
    return [record]


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = Settings.from_env()
        source = args.source or settings.source
        records = collect_records(args, settings)
        if not records:
            log_error("No invoice parsed")
            return 2

        write_records(records, fmt=args.format, output=args.output, source=source)
        log_info(f"Parsed {len(records)} invoice(s)")
        if args.submit:
            submitted = submit_records(records, settings=settings, source=source)
            log_info(f"Submitted {submitted}/{len(records)} invoice(s)")
    except RuntimeError as e:
        log_error(str(e))
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
