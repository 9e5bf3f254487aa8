import csv
import os
import re

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9&]+$")


def clean_symbol(raw):
    """ Strips quoting and whitespace from a raw cell. """
    if raw is None:
        return ""
    return raw.replace('"', "").strip()


def is_valid_symbol(sym, excluded_labels=()):
    return bool(sym) and bool(SYMBOL_PATTERN.match(sym)) and sym not in excluded_labels


def load_symbols(config, log_callback=None):
    """
    Parses the NSE index export into an ordered list of ticker symbols.
    The first `skip_rows` rows are banner/header lines; the symbol is column 0.
    A missing file is reported and yields an empty batch.
    """
    path = config.input_path
    if not os.path.exists(path):
        if log_callback: log_callback(f"❌ Input file not found: {path}")
        return []

    symbols = []
    with open(path, encoding="utf-8-sig") as f:
        for i, line in enumerate(f):
            if i < config.skip_rows:
                continue
            # One line at a time so a stray quote cannot swallow later rows
            row = next(csv.reader([line]), [])
            if not row:
                continue
            sym = clean_symbol(row[0])
            if is_valid_symbol(sym, config.excluded_labels):
                symbols.append(sym)

    if log_callback: log_callback(f"✅ Loaded {len(symbols)} Symbols. Starting Audit...")
    return symbols
