import importlib.util
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch


_REPO_ROOT = Path(__file__).resolve().parents[2]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


import pandas as pd  # noqa: E402

from tw_einvoice.models import SHEET_COLUMNS  # noqa: E402
from tw_einvoice.session import ScanSession  # noqa: E402


# scripts/ is not a package; load the script by path.
_SPEC = importlib.util.spec_from_file_location("parse_invoice_qr", _REPO_ROOT / "scripts" / "parse_invoice_qr.py")
cli = importlib.util.module_from_spec(_SPEC)
sys.modules["parse_invoice_qr"] = cli
_SPEC.loader.exec_module(cli)
main = cli.main
parse_csv_batch = cli.parse_csv_batch
parse_scan_log = cli.parse_scan_log


HEADER = "AB12345678:1120515:AB12:12345678:1000"
HEADER_2 = "CD87654321:1120516:XY34:87654321:50"
DETAIL = "商品A:2:500:1000|商品B:1500"
ENCODED = "GH55667788%3A1121010%3A1111%3A55667788%3A800%3A**"

_CLEAN_ENV = {
    "EINVOICE_API_ENDPOINT": "",
    "EINVOICE_BEARER_TOKEN": "",
    "EINVOICE_SOURCE": "",
    "EINVOICE_SECOND_QR_TIMEOUT_SECONDS": "",
    "EINVOICE_HTTP_TIMEOUT_SECONDS": "",
}


class _Quiet(unittest.TestCase):
    def setUp(self) -> None:
        for target in (
            "parse_invoice_qr.log_info",
            "parse_invoice_qr.log_warn",
            "parse_invoice_qr.log_error",
            "tw_einvoice.session.log_info",
            "tw_einvoice.session.log_warn",
            "tw_einvoice.qr.log_warn",
            "tw_einvoice.backend.log_info",
        ):
            patcher = patch(target)
            patcher.start()
            self.addCleanup(patcher.stop)
        env = patch.dict(os.environ, _CLEAN_ENV)
        env.start()
        self.addCleanup(env.stop)
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)


class TestParseScanLog(_Quiet):
    def test_pairs_and_singles(self) -> None:
        records = parse_scan_log([HEADER, DETAIL, HEADER_2 + "**Tea:1:50:50"], ScanSession())
        self.assertEqual([r.invoice_number for r in records], ["AB12345678", "CD87654321"])
        self.assertEqual(len(records[0].items), 2)
        self.assertFalse(records[0].need_second_qr)

    def test_unpaired_header_kept_when_allowed(self) -> None:
        records = parse_scan_log([HEADER, HEADER_2, DETAIL], ScanSession())
        self.assertEqual([r.invoice_number for r in records], ["AB12345678", "CD87654321"])
        self.assertTrue(records[0].need_second_qr)
        self.assertEqual(len(records[1].items), 2)

    def test_unpaired_header_dropped(self) -> None:
        records = parse_scan_log([HEADER, HEADER_2, DETAIL], ScanSession(), allow_single=False)
        self.assertEqual([r.invoice_number for r in records], ["CD87654321"])

    def test_trailing_header_without_pair(self) -> None:
        records = parse_scan_log([HEADER], ScanSession())
        self.assertEqual(len(records), 1)
        self.assertTrue(records[0].need_second_qr)
        self.assertEqual(parse_scan_log([HEADER], ScanSession(), allow_single=False), [])

    def test_detail_scanned_before_header(self) -> None:
        records = parse_scan_log(["商品A:2:500:1000", HEADER, DETAIL, HEADER_2], ScanSession())
        self.assertEqual([r.invoice_number for r in records], ["AB12345678", "CD87654321"])
        self.assertEqual([it.name for it in records[0].items], ["商品A"])
        self.assertEqual(len(records[1].items), 2)
        self.assertFalse(any(r.need_second_qr for r in records))

    def test_bad_lines_skipped(self) -> None:
        records = parse_scan_log(["invalid", HEADER + "**" + DETAIL], ScanSession())
        self.assertEqual(len(records), 1)


class TestParseCsvBatch(_Quiet):
    def test_rows(self) -> None:
        path = self.tmp / "scans.csv"
        pd.DataFrame(
            {
                "qr_a": [DETAIL, ENCODED, "invalid"],
                "qr_b": [HEADER, "", ""],
            }
        ).to_csv(path, index=False)

        records = parse_csv_batch(path)
        self.assertEqual([r.invoice_number for r in records], ["AB12345678", "GH55667788"])
        self.assertEqual(records[0].raw, HEADER + "||" + DETAIL)
        self.assertEqual(records[1].amount, 800)

    def test_qr_b_column_optional(self) -> None:
        path = self.tmp / "single.csv"
        pd.DataFrame({"qr_a": [HEADER]}).to_csv(path, index=False)
        self.assertEqual(len(parse_csv_batch(path)), 1)

    def test_missing_qr_a_column(self) -> None:
        path = self.tmp / "bad.csv"
        pd.DataFrame({"payload": [HEADER]}).to_csv(path, index=False)
        with self.assertRaises(RuntimeError):
            parse_csv_batch(path)


class TestMain(_Quiet):
    def test_pair_to_csv(self) -> None:
        out = self.tmp / "out" / "invoices.csv"
        code = main(["--format", "csv", "--output", str(out), "--source", "test", DETAIL, HEADER])
        self.assertEqual(code, 0)

        df = pd.read_csv(out, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        self.assertEqual(list(df.columns), SHEET_COLUMNS)
        self.assertEqual(df.loc[0, "invoice_number"], "AB12345678")
        self.assertEqual(df.loc[0, "invoice_date"], "2023-05-15")
        self.assertEqual(df.loc[0, "amount"], "1000")
        self.assertEqual(df.loc[0, "source"], "test")
        self.assertEqual(len(json.loads(df.loc[0, "items_json"])), 2)

    def test_single_to_json(self) -> None:
        out = self.tmp / "invoices.jsonl"
        code = main(["--output", str(out), ENCODED])
        self.assertEqual(code, 0)

        lines = out.read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(lines), 1)
        payload = json.loads(lines[0])
        self.assertEqual(payload["invoice_number"], "GH55667788")
        self.assertEqual(payload["source"], "cli")
        self.assertTrue(payload["needSecondQr"])
        self.assertEqual(payload["items_json"], "[]")

    def test_scan_log_input(self) -> None:
        log = self.tmp / "scans.txt"
        log.write_text("\n".join([DETAIL, HEADER, "", HEADER_2 + "**Tea:1:50:50"]) + "\n", encoding="utf-8")
        out = self.tmp / "out.tsv"
        self.assertEqual(main(["--input", str(log), "--format", "tsv", "--output", str(out)]), 0)

        df = pd.read_csv(out, sep="\t", dtype=str, keep_default_na=False, encoding="utf-8-sig")
        self.assertEqual(list(df["invoice_number"]), ["AB12345678", "CD87654321"])

    def test_nothing_parsed(self) -> None:
        self.assertEqual(main(["invalid"]), 2)
        self.assertEqual(main([]), 2)
        self.assertEqual(main([HEADER, DETAIL, DETAIL]), 2)
        self.assertEqual(main(["--input", str(self.tmp / "missing.txt")]), 2)

    def test_single_dropped_without_allow_single(self) -> None:
        self.assertEqual(main(["--no-allow-single", HEADER]), 2)

    def test_submit(self) -> None:
        out = self.tmp / "out.jsonl"

        class _Resp:
            def raise_for_status(self) -> None:
                return None

            def json(self):
                return {"success": True}

        with patch.dict(os.environ, {"EINVOICE_API_ENDPOINT": "https://api.example"}):
            with patch("requests.post", return_value=_Resp()) as post:
                code = main(["--submit", "--output", str(out), HEADER, DETAIL])
        self.assertEqual(code, 0)
        self.assertEqual(post.call_count, 1)
        self.assertEqual(post.call_args.kwargs["json"]["invoice_number"], "AB12345678")

    def test_incomplete_record_not_submitted(self) -> None:
        out = self.tmp / "out.jsonl"
        with patch.dict(os.environ, {"EINVOICE_API_ENDPOINT": "https://api.example"}):
            with patch("requests.post") as post:
                code = main(["--submit", "--output", str(out), HEADER])
        self.assertEqual(code, 0)
        post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
