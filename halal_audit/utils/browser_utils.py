import logging
import os
import signal
import sys

# Selenium Imports
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

# Appends a fresh <style> node on every call. Repeats are harmless.
INJECT_STYLE_JS = """
var style = document.createElement('style');
style.setAttribute('data-overlay-suppressor', '1');
style.textContent = arguments[0];
(document.head || document.documentElement).appendChild(style);
"""

FORCE_CLICK_JS = "arguments[0].click();"


class CaptureError(Exception):
    pass


# --- CHROME CONFIGURATION ---
# Auto-detect Chrome Path for stabilization on Windows/Mac
CHROME_PATH = None
if sys.platform == "win32":
    potential_paths = [
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe"
    ]
    for p in potential_paths:
        if os.path.exists(p):
            CHROME_PATH = p
            break
elif sys.platform == "darwin":
    mac_path = "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"
    if os.path.exists(mac_path):
        CHROME_PATH = mac_path

_CACHED_DRIVER_PATH = None # Cache the chromedriver binary path between launches


def get_selenium_driver(headless=False, window_size=(1366, 768), page_load_timeout=30):
    """ Launches a Chrome browser sized to the audit viewport. """
    global _CACHED_DRIVER_PATH

    options = Options()
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--mute-audio")
    options.add_argument("--disable-extensions")
    options.add_argument("--no-first-run")
    options.add_argument(f"--window-size={window_size[0]},{window_size[1]}")

    if headless:
        options.add_argument("--headless=new")

    # DOMContentLoaded is enough, the audit waits on its own elements
    options.page_load_strategy = 'eager'
    options.add_argument(f"user-agent={USER_AGENT}")

    if CHROME_PATH and os.path.exists(CHROME_PATH):
        options.binary_location = CHROME_PATH

    try:
        if _CACHED_DRIVER_PATH and os.path.exists(_CACHED_DRIVER_PATH):
            service_path = _CACHED_DRIVER_PATH
        else:
            service_path = ChromeDriverManager().install()
            _CACHED_DRIVER_PATH = service_path

        driver = webdriver.Chrome(service=Service(service_path), options=options)
        driver.set_window_size(*window_size)
        driver.set_page_load_timeout(page_load_timeout)
        return driver
    except WebDriverException as e:
        if "cannot find Chrome binary" in str(e):
            raise WebDriverException("❌ Selenium cannot find Chrome. Install Chrome or set CHROME_PATH in browser_utils.py.")
        raise


def force_quit_driver(driver):
    """
    Terminates the Selenium driver, then kills the chromedriver PID
    so no zombie Chrome outlives the run.
    """
    if not driver: return

    try:
        driver.quit()
    except Exception as e:
        logger.debug(f"Graceful quit failed: {e}")

    try:
        pid = driver.service.process.pid
    except AttributeError:
        return
    if not pid:
        return
    try:
        os.kill(pid, signal.SIGTERM)
        logger.debug(f"🔨 Force Killed Driver PID: {pid}")
    except OSError:
        pass # already gone


def suppress_overlays(driver, css):
    """
    Injects style rules that hide the site's popups and backdrops.
    Styles do not survive navigation, so call again after every page load.
    Best-effort: a failed injection is logged, never raised.
    """
    try:
        driver.execute_script(INJECT_STYLE_JS, css)
    except WebDriverException as e:
        logger.debug(f"Overlay suppression failed: {e}")


def force_click(driver, element):
    """ Clicks through JavaScript, ignoring anything layered on top of the element. """
    driver.execute_script(FORCE_CLICK_JS, element)


def wait_for(driver, condition, timeout, poll_frequency=0.25):
    """
    Bounded wait on a Selenium expected condition.
    Returns the condition's value, or None once `timeout` elapses.
    """
    try:
        return WebDriverWait(driver, timeout, poll_frequency=poll_frequency).until(condition)
    except TimeoutException:
        return None


def capture_evidence(driver, symbol, config):
    """
    Saves the visible viewport as <screenshot_dir>/<symbol>.png.
    Returns the path relative to the output root.
    """
    img_name = f"{symbol}.png"
    try:
        os.makedirs(config.screenshot_path, exist_ok=True)
    except OSError as e:
        raise CaptureError(f"Cannot create {config.screenshot_path}: {e}")

    full_path = os.path.join(config.screenshot_path, img_name)
    try:
        saved = driver.save_screenshot(full_path)
    except WebDriverException as e:
        raise CaptureError(f"Screenshot failed: {e.msg or e}")
    if not saved:
        raise CaptureError(f"Could not write {full_path}")

    return f"{config.screenshot_dir}/{img_name}"
