"""
main.py — SAMAJH proctored test server entry point

Runs uvicorn in a background thread and opens the test page in the default
browser (skip with SAMAJH_NO_BROWSER=1).
"""

import os
import sys
import threading
import time
import socket
import logging
import traceback
import webbrowser

# ── Import path (must come first) ───────────────────────────────────────────
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if _BASE_DIR not in sys.path:
    sys.path.insert(0, _BASE_DIR)

from config import BASE_DIR, LOG_FILE, DEFAULT_HOST, DEFAULT_PORT

# ── Logging ─────────────────────────────────────────────────────────────────
try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # log file not writable
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def _port_available(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((DEFAULT_HOST, port))
        except OSError:
            return False
        return True


def _pick_port(preferred: int) -> int:
    """The configured port, or any free one if it is taken."""
    if _port_available(preferred):
        return preferred
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((DEFAULT_HOST, 0))
        port = s.getsockname()[1]
    logger.warning(f"Port {preferred} is in use, falling back to {port}")
    return port


def _wait_until_listening(port: int, timeout: float = 15.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((DEFAULT_HOST, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _serve(port: int) -> None:
    try:
        import uvicorn
        from api.app import create_app
        logger.info(f"Serving on http://{DEFAULT_HOST}:{port}")
        uvicorn.run(create_app(), host=DEFAULT_HOST, port=port, log_level="warning")
    except Exception:
        logger.error(f"Server crashed:\n{traceback.format_exc()}")


if __name__ == "__main__":
    logger.info("=== SAMAJH proctored test server ===")
    os.chdir(BASE_DIR)

    port = _pick_port(DEFAULT_PORT)
    server = threading.Thread(target=_serve, args=(port,), daemon=True)
    server.start()

    if not _wait_until_listening(port):
        logger.error(f"Server did not come up on port {port}.")
        sys.exit(1)

    url = f"http://{DEFAULT_HOST}:{port}"
    if os.getenv("SAMAJH_NO_BROWSER"):
        logger.info(f"Ready: {url}")
    else:
        webbrowser.open(url)

    try:
        while server.is_alive():
            time.sleep(10)
    except KeyboardInterrupt:
        logger.info("Stopped by user.")
