import datetime
import logging
import os
import sys
import time
import traceback

import requests

# Ensure the root directory is in the path so we can import halal_audit
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from halal_audit.engines import compliance_engine
from halal_audit.utils import report_builder
from halal_audit.utils.config import ConfigError, load_config


def setup_logging(log_dir):
    """ Mirrors every status line to stdout and a UTC-stamped file under logs/app. """
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_filename = os.path.join(log_dir, f"audit_{timestamp}_UTC.log")

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[
            logging.FileHandler(log_filename, mode='a', encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ],
        force=True
    )
    return log_filename


def update_log(message):
    logging.info(message)


def cleanup_logs(log_dir, days_to_keep=7):
    """ Deletes log files older than X days to keep things tidy. """
    if not os.path.isdir(log_dir):
        return 0
    cutoff = time.time() - days_to_keep * 86400
    count = 0
    try:
        for f in os.listdir(log_dir):
            if not f.endswith(".log"):
                continue
            path = os.path.join(log_dir, f)
            if os.stat(path).st_mtime < cutoff:
                os.remove(path)
                count += 1
        if count > 0:
            update_log(f"🧹 Cleaned up {count} old log files.")
    except OSError as e:
        update_log(f"⚠️ Log cleanup failed: {e}")
    return count


def send_discord_report(webhook_url, message, embeds=None):
    """ Sends a notification to Discord. Supports rich embeds. """
    if not webhook_url: return
    if embeds:
        payload = {"embeds": embeds}
    else:
        payload = {"content": message}
    try:
        requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        update_log(f"⚠️ Discord notification failed: {e}")


def build_discord_report(summary, duration_sec):
    """
    Builds the run summary embed.
    Returns (message_text, embed_list).
    """
    total = summary.get("symbols", 0)
    rows = summary.get("rows", 0)
    resolved = summary.get("resolved", 0)
    failed = summary.get("failed", 0)
    non_compliant = summary.get("non_compliant", 0)
    capture_failures = summary.get("capture_failures", 0)
    failures = summary.get("failures", [])

    minutes = int(duration_sec // 60)
    seconds = int(duration_sec % 60)

    if failed == 0 and capture_failures == 0:
        color = 0x2ecc71 # Green
        health = "✅ All symbols audited"
    elif resolved == 0 and total > 0:
        color = 0xe74c3c # Red
        health = "🚨 No symbol could be audited"
    else:
        color = 0xf1c40f # Yellow
        health = f"⚠️ {failed} symbol(s) degraded"

    embed = {
        "title": "📊 Halal Compliance Audit",
        "description": (
            f"{health}\n\n"
            f"🔢 **Symbols:** `{total}` | **Rows written:** `{rows}`\n"
            f"✅ **Resolved:** `{resolved}` | ❌ **Failed:** `{failed}`\n"
            f"🚫 **Not compliant:** `{non_compliant}`\n"
            f"📸 **Missing screenshots:** `{capture_failures}`\n"
            f"⏱️ **Duration:** {minutes}m {seconds}s"
        ),
        "color": color,
        "fields": [],
        "footer": {"text": "Halal Screener Audit"}
    }

    if failures:
        shown = failures[:10]
        more = f"\n… and {len(failures) - len(shown)} more" if len(failures) > len(shown) else ""
        embed["fields"].append({
            "name": f"❌ Failures ({len(failures)})",
            "value": "\n".join([f"• {f}" for f in shown]) + more,
            "inline": False
        })

    return None, [embed]


def run_automation(config):
    """
    Full audit: symbols -> browser -> CSV sink -> HTML report.
    Returns the run summary dict.
    """
    start_time = time.time()
    update_log("🚀 STARTING HALAL COMPLIANCE AUDIT")
    cleanup_logs(config.log_dir, config.log_retention_days)

    summary = compliance_engine.run_compliance_scan(config, update_log)

    duration = time.time() - start_time
    update_log(f"🏁 Audit finished: {summary['rows']}/{summary['symbols']} rows, {summary['failed']} degraded, {int(duration)}s.")
    send_discord_report(config.discord_webhook, *build_discord_report(summary, duration))
    return summary


def run_report_only(config):
    """ Re-renders index.html from the existing sink without a browser. """
    path = report_builder.generate_html_report(config, update_log)
    if path is None:
        update_log(f"⚠️ No audit results at {config.csv_path}. Nothing to render.")
    return path


if __name__ == "__main__":
    try:
        cfg = load_config()
    except ConfigError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(cfg.log_dir)

    if os.environ.get("MODE") == "REPORT":
        run_report_only(cfg)
        sys.exit(0)

    try:
        run_automation(cfg)
    except Exception as e:
        error_details = traceback.format_exc()
        logging.error(f"🚨 AUDIT CRASHED: {e}")
        logging.error(error_details)
        send_discord_report(cfg.discord_webhook, None, [{
            "title": "🚨 HALAL AUDIT CRASHED",
            "description": f"**Error:** `{e}`\n```python\n{error_details[:500]}...\n```",
            "color": 0xFF0000
        }])
        sys.exit(1)

    update_log("🎬 AUDIT COMPLETE.")
