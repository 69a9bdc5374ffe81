"""HTML sanitizer for message previews, backed by DOMPurify.

DOMPurify runs in a long-lived Node.js child process; requests and
responses are newline-delimited JSON over its stdin/stdout::

    -> {"id": 1, "html": "<p onclick=...>"}
    <- {"id": 1, "html": "<p>...</p>"}

Without Node.js (or when the worker misbehaves) previews are shown as
escaped text instead of rendered HTML.
"""

from __future__ import annotations

import html as html_lib
import json
import logging
import os
import shutil
import subprocess
import threading
import time

logger = logging.getLogger(__name__)

# Directory containing this module (and worker.js, package.json)
_SANITIZER_DIR = os.path.dirname(os.path.abspath(__file__))

NPM_INSTALL_TIMEOUT = 60


def escape_fallback(html: str) -> str:
    """Render HTML as inert text."""
    return html_lib.escape(html or "")


class HtmlSanitizer:
    """DOMPurify sidecar.

    Usage:
        sanitizer = HtmlSanitizer()
        sanitizer.start()
        try:
            clean_html = sanitizer.sanitize(dirty_html)
        finally:
            sanitizer.stop()
    """

    def __init__(self, timeout: float = 5.0, node: str = "node"):
        """Initialize sanitizer.

        Args:
            timeout: Seconds to wait for a sanitization response
            node: Name or path of the Node.js executable
        """
        self._process: subprocess.Popen | None = None
        self._timeout = timeout
        self._node = node
        self._lock = threading.Lock()
        self._request_id = 0
        self._available = False

    def is_node_available(self) -> bool:
        return shutil.which(self._node) is not None

    def _ensure_deps(self) -> bool:
        """Install the worker's npm dependencies once."""
        if os.path.isdir(os.path.join(_SANITIZER_DIR, "node_modules")):
            return True

        npm = shutil.which("npm")
        if not npm:
            logger.warning("npm not found, HTML previews will be shown as text")
            return False

        logger.info("Installing HTML sanitizer dependencies")
        try:
            result = subprocess.run(
                [npm, "install", "--production", "--no-fund", "--no-audit"],
                cwd=_SANITIZER_DIR,
                capture_output=True,
                text=True,
                timeout=NPM_INSTALL_TIMEOUT,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning("npm install failed: %s", e)
            return False
        if result.returncode != 0:
            logger.warning(
                "npm install failed (exit %d): %s", result.returncode, result.stderr.strip()
            )
            return False
        return True

    def _drain_stderr(self, process: subprocess.Popen) -> None:
        try:
            for line in process.stderr:
                line = line.strip()
                if line:
                    logger.debug("[sanitizer] %s", line)
        except (ValueError, OSError):
            # Process closed
            pass

    def start(self) -> None:
        """Start the worker. Failure leaves the sanitizer in fallback mode."""
        if not self.is_node_available():
            logger.warning("Node.js not found, HTML previews will be shown as text")
            return
        if not self._ensure_deps():
            return

        worker_path = os.path.join(_SANITIZER_DIR, "worker.js")
        try:
            self._process = subprocess.Popen(
                [self._node, worker_path],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=_SANITIZER_DIR,
                text=True,
                bufsize=1,  # Line-buffered
            )
        except OSError as e:
            logger.warning("Failed to start HTML sanitizer: %s", e)
            self._process = None
            return

        threading.Thread(target=self._drain_stderr, args=(self._process,), daemon=True).start()

        ready_line = self._process.stdout.readline()
        try:
            ready = bool(ready_line) and json.loads(ready_line).get("ready")
        except (json.JSONDecodeError, AttributeError):
            ready = False
        if not ready:
            logger.warning("HTML sanitizer worker did not send ready signal")
            self._kill_process()
            return

        self._available = True
        logger.info("HTML sanitizer started (DOMPurify sidecar)")

    def sanitize(self, html: str) -> str:
        """Sanitize HTML, or escape it when the worker is unavailable."""
        if not html:
            return ""
        if not self._available or self._process is None:
            return escape_fallback(html)

        with self._lock:
            self._request_id += 1
            req_id = self._request_id
            started = time.monotonic()
            try:
                self._process.stdin.write(json.dumps({"id": req_id, "html": html}) + "\n")
                self._process.stdin.flush()

                while time.monotonic() - started < self._timeout:
                    line = self._process.stdout.readline()
                    if not line:
                        logger.warning("HTML sanitizer process died unexpectedly")
                        break
                    try:
                        response = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Invalid JSON from sanitizer: %s", line[:100])
                        continue
                    if response.get("id") != req_id:
                        continue
                    if response.get("error"):
                        logger.warning("DOMPurify error: %s", response["error"])
                        return escape_fallback(html)
                    logger.debug(
                        "Sanitized %d chars in %.1fms",
                        len(html),
                        (time.monotonic() - started) * 1000,
                    )
                    return response.get("html", "")
                else:
                    logger.warning("HTML sanitization timed out after %.1fs", self._timeout)
            except OSError as e:
                logger.warning("Sanitizer communication error: %s", e)

            self._restart()
            return escape_fallback(html)

    def _restart(self) -> None:
        self._kill_process()
        self._available = False
        self.start()

    def _kill_process(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        try:
            process.stdin.close()
        except OSError:
            pass
        try:
            process.terminate()
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=1)

    def stop(self) -> None:
        """Stop the worker."""
        self._available = False
        self._kill_process()
        logger.info("HTML sanitizer stopped")

    @property
    def available(self) -> bool:
        """Whether the worker is running."""
        return self._available
