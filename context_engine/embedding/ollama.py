"""Start a local Ollama server on demand and report its status."""

import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable

import httpx
import psutil

logger = logging.getLogger(__name__)

# Poll delays after spawning; once exhausted, poll every second until the timeout
STARTUP_DELAYS = (1.0, 2.0, 4.0, 8.0)
STEADY_DELAY = 1.0


class OllamaManager:
    """Pings, spawns and waits for ``ollama serve``.

    Args:
        base_url: Server URL, e.g. http://127.0.0.1:11434
        start_timeout: Seconds to wait for a spawned server before failing
        client: HTTP client used for pings
        sleep: Injected for tests
        clock: Injected for tests
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        start_timeout: float = 120,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.start_timeout = start_timeout
        self.client = client or httpx.Client(timeout=2.0)
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._process: subprocess.Popen | None = None

    def ping(self) -> bool:
        try:
            response = self.client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def list_models(self) -> list[str]:
        try:
            response = self.client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            return [m.get("name", "") for m in response.json().get("models", [])]
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Could not list Ollama models: {e}")
            return []

    @staticmethod
    def find_process() -> int | None:
        """PID of a running ollama process, if any."""
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                name = (proc.info.get("name") or "").lower()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if name.startswith("ollama"):
                return proc.info["pid"]
        return None

    def _spawn(self) -> None:
        binary = os.environ.get("OLLAMA_PATH") or "ollama"
        logger.info(f"Starting Ollama server: {binary} serve")
        try:
            self._process = subprocess.Popen(
                [binary, "serve"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise RuntimeError(
                f"Could not start Ollama ({binary}): {e}. Install Ollama or set OLLAMA_PATH."
            ) from e

    def ensure_running(self) -> None:
        """Block until the server answers, spawning it if needed.

        Raises:
            RuntimeError: If the server does not answer within ``start_timeout``
        """
        with self._lock:
            if self.ping():
                return
            if self.find_process() is None:
                self._spawn()
            else:
                logger.info("Ollama process found but not answering yet, waiting")

            deadline = self._clock() + self.start_timeout
            attempt = 0
            while self._clock() < deadline:
                delay = STARTUP_DELAYS[attempt] if attempt < len(STARTUP_DELAYS) else STEADY_DELAY
                self._sleep(min(delay, max(0.0, deadline - self._clock())))
                attempt += 1
                if self.ping():
                    logger.info(f"Ollama ready after {attempt} checks")
                    return

            raise RuntimeError(
                f"Ollama did not become ready at {self.base_url} within {self.start_timeout}s"
            )

    def status(self) -> dict:
        running = self.ping()
        return {
            "running": running,
            "base_url": self.base_url,
            "pid": self.find_process(),
            "models": self.list_models() if running else [],
        }


def ollama_status(base_url: str = "http://127.0.0.1:11434") -> dict:
    """Status dict for the server at ``base_url``."""
    return OllamaManager(base_url).status()
