"""
Test Suite for the Halal Screener Audit
=======================================
Tests the loader, CSV sink, report renderer and configuration layer.
None of these need a browser.
"""

import os
import shutil
import sys
import tempfile
import unittest
from types import SimpleNamespace

from bs4 import BeautifulSoup

# Ensure project root is on the path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, PROJECT_ROOT)

from halal_audit.clients.csv_sink import AuditSink, format_row
from halal_audit.utils import report_builder
from halal_audit.utils.config import AuditConfig, ConfigError, Selectors, load_config
from halal_audit.utils.symbol_loader import is_valid_symbol, load_symbols


class _TempDirCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.config = AuditConfig(base_dir=self.tmp)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def write(self, name, text):
        path = os.path.join(self.tmp, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path


# ─────────────────────────────────────────────────────
#  Tests for symbol_loader.py
# ─────────────────────────────────────────────────────

class TestIsValidSymbol(unittest.TestCase):

    def test_plain(self):
        self.assertTrue(is_valid_symbol("RELIANCE"))

    def test_ampersand_and_digits(self):
        self.assertTrue(is_valid_symbol("M&M"))
        self.assertTrue(is_valid_symbol("3MINDIA"))

    def test_rejects_lowercase_space_dash(self):
        self.assertFalse(is_valid_symbol("tcs"))
        self.assertFalse(is_valid_symbol("NIFTY 50"))
        self.assertFalse(is_valid_symbol("BAJAJ-AUTO"))
        self.assertFalse(is_valid_symbol(""))

    def test_excluded_label(self):
        self.assertFalse(is_valid_symbol("NIFTY", excluded_labels=("NIFTY",)))


class TestLoadSymbols(_TempDirCase):

    def test_filters_rows(self):
        self.write("nifty50_final.csv", "\n".join([
            '"Index banner"',
            '"SYMBOL","OPEN"',
            '"NIFTY 50","22000"',
            '"RELIANCE","2900"',
            '"tcs","3900"',
        ]) + "\n")
        self.assertEqual(load_symbols(self.config), ["RELIANCE"])

    def test_preserves_order_and_duplicates(self):
        self.write("nifty50_final.csv", "banner\nheader\n INFY ,1\n\"M&M\",2\nINFY,3\n\n")
        self.assertEqual(load_symbols(self.config), ["INFY", "M&M", "INFY"])

    def test_skips_header_rows_even_if_valid(self):
        self.write("nifty50_final.csv", "ABC\nDEF\nGHI\n")
        self.assertEqual(load_symbols(self.config), ["GHI"])

    def test_unterminated_quote_only_drops_its_row(self):
        self.write("nifty50_final.csv", "\n".join([
            "banner",
            "header",
            '"INFY,1',
            '"TCS","2"',
            "WIPRO,3",
        ]) + "\n")
        self.assertEqual(load_symbols(self.config), ["TCS", "WIPRO"])

    def test_missing_file_is_empty_batch(self):
        logs = []
        self.assertEqual(load_symbols(self.config, logs.append), [])
        self.assertIn("Input file not found", logs[0])


# ─────────────────────────────────────────────────────
#  Tests for csv_sink.py
# ─────────────────────────────────────────────────────

class TestFormatRow(unittest.TestCase):

    def test_legacy_layout(self):
        self.assertEqual(
            format_row("A", "Alpha Corp", "Halal Compliant", "screenshots/A.png"),
            'A,"Alpha Corp",Halal Compliant,screenshots/A.png\n'
        )

    def test_name_always_quoted(self):
        self.assertEqual(format_row("B", "-", "SKIPPED", "No Image"), 'B,"-",SKIPPED,No Image\n')

    def test_embedded_comma_and_quote_escaped(self):
        line = format_row("X", 'Foo "The" Co', "HALAL, maybe", "screenshots/X.png")
        self.assertEqual(line, 'X,"Foo ""The"" Co","HALAL, maybe",screenshots/X.png\n')


class TestAuditSink(_TempDirCase):

    def _result(self, symbol, name="-", status="SKIPPED", path="No Image"):
        return SimpleNamespace(symbol=symbol, resolved_name=name, status=status, evidence_path=path)

    def test_initialize_writes_header(self):
        sink = AuditSink(self.config.csv_path)
        sink.initialize()
        with open(self.config.csv_path, encoding="utf-8") as f:
            self.assertEqual(f.read(), "Symbol,Name,Status,Screenshot\n")
        self.assertEqual(sink.read_rows(), [])

    def test_append_is_immediately_readable(self):
        sink = AuditSink(self.config.csv_path)
        sink.initialize()
        sink.append(self._result("A", "Alpha, Inc", "HALAL", "screenshots/A.png"))
        self.assertEqual(sink.read_rows(), [["A", "Alpha, Inc", "HALAL", "screenshots/A.png"]])
        sink.append(self._result("B"))
        self.assertEqual(len(sink.read_rows()), 2)

    def test_missing_sink_reads_empty(self):
        self.assertEqual(AuditSink(os.path.join(self.tmp, "nope.csv")).read_rows(), [])


# ─────────────────────────────────────────────────────
#  Tests for report_builder.py
# ─────────────────────────────────────────────────────

class TestBadgeClass(unittest.TestCase):

    def test_non_compliant_variants_collapse(self):
        for status in ["NOT HALAL", "Not Shariah Compliant", "not compliant", "NOT  HALAL (debt)"]:
            self.assertEqual(report_builder.badge_class(status), "NOT", status)

    def test_other_statuses_verbatim(self):
        self.assertEqual(report_builder.badge_class("HALAL"), "HALAL")
        self.assertEqual(report_builder.badge_class("DOUBTFUL"), "DOUBTFUL")
        self.assertEqual(report_builder.badge_class("Halal Compliant"), "Halal Compliant")

    def test_skipped_has_own_class(self):
        self.assertEqual(report_builder.badge_class("SKIPPED"), "SKIPPED")
        self.assertNotEqual(report_builder.badge_class("SKIPPED"), report_builder.badge_class("NOT HALAL"))

    def test_marker_is_whole_word(self):
        self.assertFalse(report_builder.is_non_compliant("NOTABLE HALAL"))


class TestGenerateHtmlReport(_TempDirCase):

    def _sink(self, *rows):
        text = "Symbol,Name,Status,Screenshot\n" + "".join(format_row(*r) for r in rows)
        return self.write("halal_report.csv", text)

    def test_no_sink_is_noop(self):
        self.assertIsNone(report_builder.generate_html_report(self.config))
        self.assertFalse(os.path.exists(self.config.html_path))

    def test_rows_and_badges(self):
        self._sink(
            ("A", "Alpha Corp", "Halal Compliant", "screenshots/A.png"),
            ("B", "-", "SKIPPED", "screenshots/B.png"),
            ("C", "Charlie", "NOT HALAL", "No Image"),
        )
        path = report_builder.generate_html_report(self.config)
        self.assertEqual(path, self.config.html_path)

        with open(path, encoding="utf-8") as f:
            soup = BeautifulSoup(f.read(), "html.parser")
        data_rows = [tr for tr in soup.find_all("tr") if tr.find("td")]
        self.assertEqual(len(data_rows), 3)

        badges = [tr.find("span", class_="badge") for tr in data_rows]
        self.assertEqual(badges[1]["class"], ["badge", "SKIPPED"])
        self.assertEqual(badges[2]["class"], ["badge", "NOT"])
        self.assertNotEqual(badges[0]["class"], badges[1]["class"])

        img = data_rows[0].find("img")
        self.assertEqual(img["src"], "screenshots/A.png")
        self.assertIn("openModal", img["onclick"])
        self.assertIsNotNone(soup.find(id="myModal"))

    def test_idempotent(self):
        self._sink(("A", "Alpha", "HALAL", "screenshots/A.png"))
        report_builder.generate_html_report(self.config)
        with open(self.config.html_path, "rb") as f:
            first = f.read()
        report_builder.generate_html_report(self.config)
        with open(self.config.html_path, "rb") as f:
            self.assertEqual(f.read(), first)

    def test_values_are_escaped(self):
        self._sink(("X", "<script>alert(1)</script>", "HALAL", "screenshots/X.png"))
        html = report_builder.render_html(report_builder.read_report_rows(self.config.csv_path))
        self.assertNotIn("<script>alert(1)", html)
        self.assertIn("&lt;script&gt;", html)

    def test_short_rows_skipped(self):
        self.write("halal_report.csv", "Symbol,Name,Status,Screenshot\nA,B\n\nC,\"Cee\",HALAL,x.png\n")
        rows = report_builder.read_report_rows(self.config.csv_path)
        self.assertEqual([r.symbol for r in rows], ["C"])

    def test_quoted_name_survives_round_trip(self):
        self._sink(("X", 'Foo "The" Co', "HALAL", "screenshots/X.png"))
        rows = report_builder.read_report_rows(self.config.csv_path)
        self.assertEqual(rows[0].name, 'Foo "The" Co')
        html = report_builder.render_html(rows)
        self.assertIn("Foo &quot;The&quot; Co", html)


# ─────────────────────────────────────────────────────
#  Tests for config.py
# ─────────────────────────────────────────────────────

class TestLoadConfig(_TempDirCase):

    def test_defaults(self):
        # run from an empty dir so no ./audit.toml is picked up
        cwd = os.getcwd()
        os.chdir(self.tmp)
        try:
            cfg = load_config(environ={}, use_dotenv=False)
        finally:
            os.chdir(cwd)
        self.assertEqual(os.path.realpath(cfg.base_dir), os.path.realpath(self.tmp))
        self.assertEqual(cfg.target_url, "https://musaffa.com")
        self.assertEqual(cfg.status_timeout, 5.0)
        self.assertEqual(cfg.selectors, Selectors())
        self.assertEqual(cfg.excluded_labels, ("NIFTY 50",))

    def test_toml_then_env(self):
        path = self.write("audit.toml", "\n".join([
            "[audit]",
            'input_file = "nifty_next50.csv"',
            "status_timeout = 8",
            "headless = true",
            'excluded_labels = ["NIFTY 50", "NIFTY NEXT 50"]',
            "[audit.selectors]",
            'status = ".status-chip"',
        ]) + "\n")
        env = {"AUDIT_STATUS_TIMEOUT": "3.5", "AUDIT_BASE_DIR": self.tmp}
        cfg = load_config(config_file=path, environ=env, use_dotenv=False)

        self.assertEqual(cfg.input_file, "nifty_next50.csv")
        self.assertEqual(cfg.status_timeout, 3.5)
        self.assertTrue(cfg.headless)
        self.assertEqual(cfg.excluded_labels, ("NIFTY 50", "NIFTY NEXT 50"))
        self.assertEqual(cfg.selectors.status, ".status-chip")
        self.assertEqual(cfg.selectors.dropdown_item, ".stock-name")
        self.assertEqual(cfg.input_path, os.path.join(self.tmp, "nifty_next50.csv"))

    def test_env_bool_and_webhook(self):
        env = {"AUDIT_HEADLESS": "yes", "DISCORD_WEBHOOK_URL": "https://discord.test/hook"}
        cfg = load_config(config_file=self.write("audit.toml", ""), environ=env, use_dotenv=False)
        self.assertTrue(cfg.headless)
        self.assertEqual(cfg.discord_webhook, "https://discord.test/hook")

    def test_bad_number(self):
        with self.assertRaises(ConfigError):
            load_config(config_file=self.write("audit.toml", ""), environ={"AUDIT_SKIP_ROWS": "two"}, use_dotenv=False)

    def test_bad_bool(self):
        with self.assertRaises(ConfigError):
            load_config(config_file=self.write("audit.toml", ""), environ={"AUDIT_HEADLESS": "maybe"}, use_dotenv=False)

    def test_excluded_labels_must_be_list(self):
        path = self.write("audit.toml", '[audit]\nexcluded_labels = "NIFTY 50"\n')
        with self.assertRaises(ConfigError):
            load_config(config_file=path, environ={}, use_dotenv=False)

    def test_unknown_toml_key(self):
        path = self.write("audit.toml", "[audit]\nspeed = 3\n")
        with self.assertRaises(ConfigError):
            load_config(config_file=path, environ={}, use_dotenv=False)

    def test_explicit_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config(config_file=os.path.join(self.tmp, "missing.toml"), environ={}, use_dotenv=False)


if __name__ == "__main__":
    unittest.main(verbosity=2)
