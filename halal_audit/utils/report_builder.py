import html
import re
from dataclasses import dataclass

from halal_audit.clients.csv_sink import AuditSink

NON_COMPLIANT_CLASS = "NOT"
NEGATIVE_MARKER = re.compile(r"\bNOT\b", re.IGNORECASE)

REPORT_TITLE = "Nifty 50 Halal Screener"

PAGE_HEAD = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
        body { font-family: sans-serif; padding: 20px; background: #f8f9fa; }
        .container { max-width: 1200px; margin: 0 auto; background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
        table { width: 100%; border-collapse: collapse; margin-top: 20px; }
        th { background: #343a40; color: white; padding: 12px; text-align: left; }
        td { padding: 12px; border-bottom: 1px solid #dee2e6; vertical-align: middle; }
        td.idx { text-align: center; color: #888; }

        .badge { padding: 5px 10px; border-radius: 4px; font-weight: bold; font-size: 0.85em; background: #e9ecef; color: #343a40; }
        .HALAL { background: #d4edda; color: #155724; }
        .NOT { background: #f8d7da; color: #721c24; }
        .DOUBTFUL { background: #fff3cd; color: #856404; }
        .SKIPPED { background: #e2e3e5; color: #383d41; text-decoration: line-through; }

        .thumb { height: 50px; border: 1px solid #ddd; cursor: pointer; transition: 0.2s; }
        .thumb:hover { transform: scale(3); z-index: 10; border-color: #333; position: relative; }

        /* Lightbox */
        .modal { display: none; position: fixed; z-index: 1000; left: 0; top: 0; width: 100%; height: 100%; background: rgba(0,0,0,0.9); }
        .modal-content { display: block; max-width: 90%; max-height: 90%; margin: 50px auto; }
        .close { position: absolute; top: 20px; right: 35px; color: #fff; font-size: 40px; cursor: pointer; }
    </style>
</head>
<body>
    <div class="container">
        <h1>📊 {title}</h1>
        <table>
            <tr><th>#</th><th>Symbol</th><th>Company Name</th><th>Status</th><th>Evidence</th></tr>
"""

PAGE_TAIL = """        </table>
    </div>
    <div id="myModal" class="modal" onclick="this.style.display='none'">
        <span class="close">&times;</span>
        <img class="modal-content" id="img01">
    </div>
    <script>
        function openModal(src) {
            document.getElementById("myModal").style.display = "block";
            document.getElementById("img01").src = src;
        }
    </script>
</body>
</html>
"""

ROW_TEMPLATE = """            <tr>
                <td class="idx">{idx}</td>
                <td><strong>{symbol}</strong></td>
                <td>{name}</td>
                <td><span class="badge {badge}">{status}</span></td>
                <td><img src="{img}" class="thumb" alt="{symbol}" onclick="openModal(this.src)"></td>
            </tr>
"""


@dataclass(frozen=True)
class ReportRow:
    symbol: str
    name: str
    status: str
    screenshot: str

    @property
    def badge_class(self):
        return badge_class(self.status)


def is_non_compliant(status):
    return bool(NEGATIVE_MARKER.search(status or ""))


def badge_class(status):
    """
    Any status carrying the NOT marker collapses to one class.
    Everything else is used verbatim (HALAL, DOUBTFUL, SKIPPED...).
    """
    if is_non_compliant(status):
        return NON_COMPLIANT_CLASS
    return status


def read_report_rows(csv_path):
    rows = []
    for raw in AuditSink(csv_path).read_rows():
        if len(raw) < 4:
            continue
        sym, name, status, img = raw[:4]
        # csv.reader has already undone the quoting; keep the name as parsed
        rows.append(ReportRow(sym.strip(), name, status.strip(), img.strip()))
    return rows


def render_html(rows, title=REPORT_TITLE):
    esc = html.escape
    parts = [PAGE_HEAD.replace("{title}", esc(title))]
    for idx, row in enumerate(rows, 1):
        parts.append(ROW_TEMPLATE.format(
            idx=idx,
            symbol=esc(row.symbol),
            name=esc(row.name),
            badge=esc(row.badge_class),
            status=esc(row.status),
            img=esc(row.screenshot),
        ))
    parts.append(PAGE_TAIL)
    return "".join(parts)


def generate_html_report(config, log_callback=None):
    """
    Renders the CSV sink as a static HTML page at config.html_path.
    No sink yet means nothing to render: returns None without error.
    """
    sink = AuditSink(config.csv_path)
    if not sink.exists():
        return None

    rows = read_report_rows(config.csv_path)
    with open(config.html_path, "w", encoding="utf-8", newline="\n") as f:
        f.write(render_html(rows))

    if log_callback: log_callback(f"\n✨ REPORT READY: {config.html_path} ({len(rows)} rows)")
    return config.html_path
