import csv
import os

HEADER = ["Symbol", "Name", "Status", "Screenshot"]
SPECIAL_CHARS = (",", '"', "\n", "\r")


def quote_field(value):
    """ RFC 4180 quoting: wrap in quotes and double any embedded quote. """
    return '"' + str(value).replace('"', '""') + '"'


def plain_field(value):
    """ Leaves the value bare unless it would break the row. """
    value = str(value)
    if any(c in value for c in SPECIAL_CHARS):
        return quote_field(value)
    return value


def format_row(symbol, name, status, screenshot):
    """
    Serializes one audit row as `symbol,"name",status,path`.
    The name is always quoted; the other fields only when they need it.
    """
    return ",".join([plain_field(symbol), quote_field(name), plain_field(status), plain_field(screenshot)]) + "\n"


class AuditSink:
    """
    Append-only CSV store for audit results.
    Each row is flushed and fsynced as soon as it is written so a crash
    mid-run keeps every row audited so far.
    """

    def __init__(self, path):
        self.path = path

    def initialize(self):
        """ Starts a fresh sink holding only the header (overwrites any prior run). """
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8", newline="") as f:
            f.write(",".join(HEADER) + "\n")

    def append(self, result):
        line = format_row(result.symbol, result.resolved_name, result.status, result.evidence_path)
        with open(self.path, "a", encoding="utf-8", newline="") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        return line

    def exists(self):
        return os.path.exists(self.path)

    def read_rows(self):
        """ Returns data rows as lists of strings (header excluded). """
        if not self.exists():
            return []
        with open(self.path, encoding="utf-8", newline="") as f:
            rows = list(csv.reader(f))
        return rows[1:]
