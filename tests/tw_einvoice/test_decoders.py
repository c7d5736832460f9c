import sys
import unittest
from pathlib import Path


# Ensure repo root is on sys.path so we can import `tw_einvoice.*`
_REPO_ROOT = Path(__file__).resolve().parents[2]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


from tw_einvoice.decoders import (  # noqa: E402
    clean_qr_text,
    fix_mojibake_text_best_effort,
    parse_date,
    roc_to_gregorian,
    safe_decode,
    to_int,
)


class TestToInt(unittest.TestCase):
    def test_leading_integer(self) -> None:
        self.assertEqual(to_int("42x"), 42)
        self.assertEqual(to_int("3.5"), 3)
        self.assertEqual(to_int(" -7 "), -7)
        self.assertEqual(to_int("+8"), 8)
        self.assertEqual(to_int(12), 12)

    def test_default_on_garbage(self) -> None:
        self.assertEqual(to_int("abc", 5), 5)
        self.assertEqual(to_int(""), 0)
        self.assertEqual(to_int(None, 3), 3)
        self.assertEqual(to_int("x42", 1), 1)


class TestSafeDecode(unittest.TestCase):
    def test_decodes_percent_escapes(self) -> None:
        self.assertEqual(safe_decode("GH55667788%3A1121010"), "GH55667788:1121010")
        self.assertEqual(safe_decode("%E5%95%86%E5%93%81A"), "商品A")

    def test_plain_text_untouched(self) -> None:
        self.assertEqual(safe_decode("a+b:c"), "a+b:c")
        self.assertEqual(safe_decode(""), "")

    def test_malformed_escape_returns_original(self) -> None:
        self.assertEqual(safe_decode("100%"), "100%")
        self.assertEqual(safe_decode("%zz%3A"), "%zz%3A")
        # valid escape syntax, invalid UTF-8
        self.assertEqual(safe_decode("%FF%3A"), "%FF%3A")


class TestParseDate(unittest.TestCase):
    def test_roc_date(self) -> None:
        self.assertEqual(parse_date("1120515"), "2023-05-15")
        self.assertEqual(parse_date("112/05/15"), "2023-05-15")
        self.assertEqual(parse_date("112.05.15"), "2023-05-15")
        self.assertEqual(roc_to_gregorian("0991231"), "2010-12-31")

    def test_gregorian_date(self) -> None:
        self.assertEqual(parse_date("20231115"), "2023-11-15")
        self.assertEqual(parse_date("2023-11-15"), "2023-11-15")
        self.assertEqual(parse_date("2023/11/15"), "2023-11-15")

    def test_generic_formats(self) -> None:
        self.assertEqual(parse_date("2023-05-15T10:20:00"), "2023-05-15")
        self.assertEqual(parse_date("May 15, 2023"), "2023-05-15")
        self.assertEqual(parse_date("2023/5/1"), "2023-05-01")

    def test_unrecognised_kept_verbatim(self) -> None:
        self.assertEqual(parse_date("someday"), "someday")
        self.assertEqual(parse_date("12345"), "12345")
        self.assertEqual(parse_date(""), "")
        self.assertEqual(parse_date(None), "")


class TestCleanQrText(unittest.TestCase):
    def test_strips_bom_and_control_chars(self) -> None:
        self.assertEqual(clean_qr_text("\ufeff AB\x00C "), "ABC")
        self.assertEqual(clean_qr_text(None), "")


class TestMojibake(unittest.TestCase):
    def test_repairs_cp932_mojibake(self) -> None:
        # CP950 bytes shown through CP932, as seen on real scans.
        self.assertEqual(fix_mojibake_text_best_effort("､E､GｵLｹ]"), "九二無鉛")

    def test_readable_text_unchanged(self) -> None:
        self.assertEqual(fix_mojibake_text_best_effort("Milk"), "Milk")
        self.assertEqual(fix_mojibake_text_best_effort("商品A"), "商品A")
        self.assertEqual(fix_mojibake_text_best_effort("  "), "")


if __name__ == "__main__":
    unittest.main()
