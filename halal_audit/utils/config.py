import os
from dataclasses import dataclass, field, replace

import toml
from dotenv import load_dotenv

DEFAULT_CONFIG_FILE = "audit.toml"

# Invisibility cloak for the Musaffa popups (riba modal + dark backdrop)
DEFAULT_OVERLAY_CSS = """
    app-riba-modal, .riba_free_modal, .modal-content {
        display: none !important;
        visibility: hidden !important;
        opacity: 0 !important;
        pointer-events: none !important;
    }
    .modal-backdrop, .backdrop, .cdk-overlay-backdrop {
        display: none !important;
        width: 0 !important;
        height: 0 !important;
        pointer-events: none !important;
    }
    .modal { display: none !important; }
    body { overflow: auto !important; padding-right: 0 !important; }
"""


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Selectors:
    search_placeholder: str = "Search Stocks & ETFs"
    dropdown_item: str = ".stock-name"
    company_name: str = ".company-name"
    status: str = ".compliance-chip h5.status-text"


@dataclass(frozen=True)
class AuditConfig:
    """
    Everything a run needs: paths, site selectors and timing.
    Passed explicitly to each component so tests can swap paths and timeouts.
    """
    base_dir: str = field(default_factory=os.getcwd)
    input_file: str = "nifty50_final.csv"
    csv_output: str = "halal_report.csv"
    html_output: str = "index.html"
    screenshot_dir: str = "screenshots"
    target_url: str = "https://musaffa.com"

    headless: bool = False
    window_width: int = 1366
    window_height: int = 768
    page_load_timeout: float = 30.0
    element_timeout: float = 10.0

    search_settle_seconds: float = 2.0
    reset_settle_seconds: float = 1.0
    status_timeout: float = 5.0

    skip_rows: int = 2
    excluded_labels: tuple = ("NIFTY 50",)
    selectors: Selectors = field(default_factory=Selectors)
    overlay_css: str = DEFAULT_OVERLAY_CSS

    discord_webhook: str = None
    log_retention_days: int = 7

    @property
    def input_path(self):
        return os.path.join(self.base_dir, self.input_file)

    @property
    def csv_path(self):
        return os.path.join(self.base_dir, self.csv_output)

    @property
    def html_path(self):
        return os.path.join(self.base_dir, self.html_output)

    @property
    def screenshot_path(self):
        return os.path.join(self.base_dir, self.screenshot_dir)

    @property
    def log_dir(self):
        return os.path.join(self.base_dir, "logs", "app")


# env var -> (field, parser)
ENV_OVERRIDES = {
    "AUDIT_BASE_DIR": ("base_dir", str),
    "AUDIT_INPUT_FILE": ("input_file", str),
    "AUDIT_CSV_OUTPUT": ("csv_output", str),
    "AUDIT_HTML_OUTPUT": ("html_output", str),
    "AUDIT_SCREENSHOT_DIR": ("screenshot_dir", str),
    "AUDIT_TARGET_URL": ("target_url", str),
    "AUDIT_HEADLESS": ("headless", "bool"),
    "AUDIT_WINDOW_WIDTH": ("window_width", int),
    "AUDIT_WINDOW_HEIGHT": ("window_height", int),
    "AUDIT_PAGE_LOAD_TIMEOUT": ("page_load_timeout", float),
    "AUDIT_ELEMENT_TIMEOUT": ("element_timeout", float),
    "AUDIT_SEARCH_SETTLE": ("search_settle_seconds", float),
    "AUDIT_RESET_SETTLE": ("reset_settle_seconds", float),
    "AUDIT_STATUS_TIMEOUT": ("status_timeout", float),
    "AUDIT_SKIP_ROWS": ("skip_rows", int),
    "DISCORD_WEBHOOK_URL": ("discord_webhook", str),
    "AUDIT_LOG_RETENTION_DAYS": ("log_retention_days", int),
}

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}


def _parse_bool(key, raw):
    if isinstance(raw, bool):
        return raw
    val = str(raw).strip().lower()
    if val in TRUTHY:
        return True
    if val in FALSY:
        return False
    raise ConfigError(f"{key}: expected a boolean, got '{raw}'")


def _coerce(key, raw, parser):
    if parser == "bool":
        return _parse_bool(key, raw)
    try:
        return parser(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key}: expected {parser.__name__}, got '{raw}'")


def _from_toml(path):
    """ Reads the [audit] table (and optional [audit.selectors]) of a TOML file. """
    try:
        data = toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML ({e})")

    section = dict(data.get("audit", {}))
    values = {}

    sel = section.pop("selectors", None)
    if sel:
        unknown = set(sel) - set(Selectors.__dataclass_fields__)
        if unknown:
            raise ConfigError(f"{path}: unknown selector keys {sorted(unknown)}")
        values["selectors"] = Selectors(**sel)

    if "excluded_labels" in section:
        labels = section.pop("excluded_labels")
        if not isinstance(labels, list) or not all(isinstance(l, str) for l in labels):
            raise ConfigError(f"{path}: excluded_labels must be a list of strings, got {labels!r}")
        values["excluded_labels"] = tuple(labels)

    fields = AuditConfig.__dataclass_fields__
    parsers = {f: p for f, p in ENV_OVERRIDES.values()}
    for key, raw in section.items():
        if key not in fields:
            raise ConfigError(f"{path}: unknown key '{key}'")
        parser = parsers.get(key)
        values[key] = _coerce(key, raw, parser) if parser else raw
    return values


def load_config(config_file=None, environ=None, use_dotenv=True):
    """
    Builds an AuditConfig.
    Priority (later wins):
    1. Dataclass defaults
    2. TOML file ([audit] table): AUDIT_CONFIG_FILE or ./audit.toml
    3. Environment vars (a local .env is loaded first)
    """
    if use_dotenv:
        load_dotenv()
    env = os.environ if environ is None else environ

    cfg = AuditConfig()

    path = config_file or env.get("AUDIT_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    if os.path.exists(path):
        cfg = replace(cfg, **_from_toml(path))
    elif config_file or env.get("AUDIT_CONFIG_FILE"):
        raise ConfigError(f"Config file not found: {path}")

    overrides = {}
    for var, (name, parser) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None:
            continue
        if parser is str and not raw.strip():
            continue
        overrides[name] = _coerce(var, raw, parser)

    if overrides:
        cfg = replace(cfg, **overrides)
    return cfg
