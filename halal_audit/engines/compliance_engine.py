import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC

from halal_audit.clients.csv_sink import AuditSink
from halal_audit.utils import browser_utils, report_builder, symbol_loader

# Sentinels a field keeps when its step degrades
UNRESOLVED_NAME = "-"
SKIPPED_STATUS = "SKIPPED"
NO_IMAGE = "No Image"

# Errors after which the browser itself is unusable
SESSION_DEATH = (InvalidSessionIdException, NoSuchWindowException)


class AuditState(Enum):
    START = "START"
    SEARCHING = "SEARCHING"
    SELECTING = "SELECTING"
    EXTRACTING = "EXTRACTING"
    EXTRACTED = "EXTRACTED"
    EXTRACT_FAILED = "EXTRACT_FAILED"
    CAPTURED = "CAPTURED"
    DONE = "DONE"


@dataclass(frozen=True)
class StepOutcome:
    ok: bool
    value: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, value=None):
        return cls(True, value=value)

    @classmethod
    def degraded(cls, reason):
        return cls(False, reason=reason)


@dataclass
class AuditResult:
    symbol: str
    resolved_name: str = UNRESOLVED_NAME
    status: str = SKIPPED_STATUS
    evidence_path: str = NO_IMAGE
    state: AuditState = AuditState.START
    trace: List[AuditState] = field(default_factory=list)
    failure_reason: Optional[str] = None
    name_reason: Optional[str] = None
    capture_reason: Optional[str] = None

    @property
    def extracted(self):
        return AuditState.EXTRACTED in self.trace

    @property
    def non_compliant(self):
        return report_builder.is_non_compliant(self.status)


def normalize_status(text):
    """ Collapses line breaks to single spaces and trims. """
    return re.sub(r"[\r\n]+", " ", text or "").strip()


def choose_suggestion(texts, symbol):
    """
    Index of the dropdown entry to click: the first one whose text contains
    the symbol (case-sensitive substring), else the first entry.
    """
    for i, text in enumerate(texts):
        if symbol in (text or ""):
            return i
    return 0


class ComplianceAuditor:
    """
    Runs the search -> select -> extract -> capture sequence for one symbol
    on an already open page. Every path ends in a screenshot attempt and a
    returned AuditResult; no exception escapes audit_symbol().
    """

    def __init__(self, driver, config, log_callback, sleep=time.sleep):
        self.driver = driver
        self.config = config
        self.log = log_callback or (lambda msg: None)
        self.sleep = sleep
        self.selectors = config.selectors

    def _enter(self, result, state):
        result.state = state
        result.trace.append(state)

    # --- STEP A: SEARCH ---
    def _search(self, symbol):
        browser_utils.suppress_overlays(self.driver, self.config.overlay_css)

        locator = (By.CSS_SELECTOR, f'input[placeholder="{self.selectors.search_placeholder}"]')
        search_bar = browser_utils.wait_for(self.driver, EC.presence_of_element_located(locator), self.config.element_timeout)
        if search_bar is None:
            return StepOutcome.degraded("Search bar not found")

        browser_utils.force_click(self.driver, search_bar)
        search_bar.clear()
        search_bar.send_keys(symbol)
        # Fixed settle for the async suggestion list, no polling
        self.sleep(self.config.search_settle_seconds)
        return StepOutcome.success()

    # --- STEP B: SELECT ---
    def _select(self, symbol):
        items = self.driver.find_elements(By.CSS_SELECTOR, self.selectors.dropdown_item)
        if not items:
            return StepOutcome.degraded("Dropdown empty")

        texts = [item.text for item in items]
        idx = choose_suggestion(texts, symbol)
        if symbol not in (texts[idx] or ""):
            self.log(f"│   ├── ⚠️ No suggestion mentions {symbol}, taking the first one")

        browser_utils.force_click(self.driver, items[idx])
        return StepOutcome.success(texts[idx])

    # --- STEP C1: NAME (best-effort) ---
    def _read_name(self):
        try:
            elements = self.driver.find_elements(By.CSS_SELECTOR, self.selectors.company_name)
            if not elements:
                return StepOutcome.degraded("Name element missing")
            el = elements[0]
            if not el.is_displayed():
                return StepOutcome.degraded("Name element hidden")
            return StepOutcome.success(el.text.strip())
        except WebDriverException as e:
            return StepOutcome.degraded(f"Name read failed: {e.msg or e}")

    # --- STEP C2: STATUS ---
    def _read_status(self):
        locator = (By.CSS_SELECTOR, self.selectors.status)
        el = browser_utils.wait_for(self.driver, EC.visibility_of_element_located(locator), self.config.status_timeout)
        if el is None:
            return StepOutcome.degraded(f"Status not visible after {self.config.status_timeout:g}s")
        return StepOutcome.success(normalize_status(el.text))

    def _extract(self, symbol, result):
        """ Steps A-C. Returns the outcome that decides EXTRACTED vs EXTRACT_FAILED. """
        self._enter(result, AuditState.SEARCHING)
        outcome = self._search(symbol)
        if not outcome.ok:
            return outcome

        self._enter(result, AuditState.SELECTING)
        outcome = self._select(symbol)
        if not outcome.ok:
            return outcome

        self._enter(result, AuditState.EXTRACTING)
        name = self._read_name()
        if name.ok:
            result.resolved_name = name.value
        else:
            result.name_reason = name.reason
            self.log(f"│   ├── ⚠️ Name unresolved ({name.reason})")

        status = self._read_status()
        if status.ok:
            result.status = status.value
        return status

    def _capture(self, symbol, result):
        try:
            result.evidence_path = browser_utils.capture_evidence(self.driver, symbol, self.config)
            self._enter(result, AuditState.CAPTURED)
        except browser_utils.CaptureError as e:
            result.capture_reason = str(e)
            self.log(f"│   └── ⚠️ Could not save screenshot ({e})")

    def audit_symbol(self, symbol):
        result = AuditResult(symbol=symbol)
        self._enter(result, AuditState.START)
        self.log(f"\n🔍 Processing: {symbol}")

        try:
            outcome = self._extract(symbol, result)
        except Exception as e:
            # Anything unforeseen in steps A-C degrades this symbol only
            outcome = StepOutcome.degraded(f"{type(e).__name__}: {e}")

        if outcome.ok:
            self._enter(result, AuditState.EXTRACTED)
            self.log(f"│   ├── 👉 Found: {result.resolved_name} | Status: {result.status}")
        else:
            self._enter(result, AuditState.EXTRACT_FAILED)
            result.failure_reason = outcome.reason
            self.log(f"│   ├── ❌ Failed: {outcome.reason}")

        # Always take evidence
        self._capture(symbol, result)
        self._enter(result, AuditState.DONE)
        return result


def _reset_page(driver, config, log_callback):
    """
    Back to the landing page. Only a dead browser session is fatal;
    a slow or failed reload is logged and the next symbol still gets its row.
    """
    try:
        driver.get(config.target_url)
    except SESSION_DEATH:
        raise
    except TimeoutException:
        log_callback(f"│   └── ⚠️ Landing page reload timed out. Continuing.")
    except WebDriverException as e:
        log_callback(f"│   └── ⚠️ Landing page reload failed ({e.msg or e}). Continuing.")


def run_compliance_scan(config, log_callback, driver_factory=None, sleep=time.sleep):
    """
    Main entry point for the compliance audit.
    One browser, one page, symbols audited strictly in order; each result is
    appended to the CSV sink before the next symbol starts.
    """
    symbols = symbol_loader.load_symbols(config, log_callback)

    sink = AuditSink(config.csv_path)
    sink.initialize()

    summary = {
        "symbols": len(symbols),
        "rows": 0,
        "resolved": 0,
        "failed": 0,
        "non_compliant": 0,
        "capture_failures": 0,
        "failures": [],
        "report": None,
    }

    log_callback(f"\n📂 ACTIVATING PHASE: HALAL COMPLIANCE AUDIT (SELENIUM)")
    log_callback(f"├── 🖥️ Launching Chrome Driver (This may take a moment)...")
    factory = driver_factory or browser_utils.get_selenium_driver
    driver = factory(
        headless=config.headless,
        window_size=(config.window_width, config.window_height),
        page_load_timeout=config.page_load_timeout,
    )

    try:
        log_callback(f"├── 🌐 Opening {config.target_url}")
        driver.get(config.target_url)
        browser_utils.suppress_overlays(driver, config.overlay_css)

        auditor = ComplianceAuditor(driver, config, log_callback, sleep=sleep)
        for pos, sym in enumerate(symbols, 1):
            result = auditor.audit_symbol(sym)
            sink.append(result)
            summary["rows"] += 1

            if result.extracted:
                summary["resolved"] += 1
            else:
                summary["failed"] += 1
                summary["failures"].append(f"{sym}: {result.failure_reason}")
            if result.non_compliant:
                summary["non_compliant"] += 1
            if result.capture_reason:
                summary["capture_failures"] += 1
            log_callback(f"│   └── 💾 Saved row {pos}/{len(symbols)}")

            _reset_page(driver, config, log_callback)
            sleep(config.reset_settle_seconds)

    finally:
        # Whatever reached the sink gets a report, even after an abort
        try:
            summary["report"] = report_builder.generate_html_report(config, log_callback)
        except OSError as e:
            log_callback(f"❌ Report rendering failed: {e}")
        log_callback(f"├── 🛑 Closing Chrome Driver...")
        browser_utils.force_quit_driver(driver)

    return summary
