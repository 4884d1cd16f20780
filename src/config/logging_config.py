"""
Logging configuration with optional Grafana Loki shipping.

Console logging is always on: a readable line format in development and
JSON everywhere else. When LOKI_ENABLED is set, records are also pushed to
Loki from a background thread so webhook handling never blocks on log I/O.
Every record carries the request id of the HTTP request that produced it.
"""

import atexit
import json
import logging
import queue
import sys
import threading

import httpx

from src.config.config import Config

logger = logging.getLogger(__name__)


class LokiLogHandler(logging.Handler):
    """
    Non-blocking log handler that pushes records to Grafana Loki.

    Records are queued and sent by a daemon thread. When the queue is full
    records are dropped; Loki shipping is best-effort.
    """

    def __init__(self, loki_url: str, tags: dict[str, str], max_queue_size: int = 10000):
        super().__init__()
        self.loki_url = loki_url
        self.tags = tags
        self._client: httpx.Client | None = None
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._shutdown = threading.Event()
        self._worker_thread = threading.Thread(target=self._worker, daemon=True)
        self._worker_thread.start()

        atexit.register(self.close)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(5.0, connect=2.0),
                limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
            )
        return self._client

    def _worker(self) -> None:
        while True:
            try:
                payload = self._queue.get(timeout=0.5)
            except queue.Empty:
                if self._shutdown.is_set():
                    break
                continue

            try:
                response = self._get_client().post(self.loki_url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError:
                # Loki outages must not affect request handling
                pass
            finally:
                self._queue.task_done()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            labels = {**self.tags, "level": record.levelname, "logger": record.name}

            request_id = getattr(record, "request_id", None)
            if request_id:
                labels["request_id"] = request_id
            if record.exc_info and record.exc_info[0]:
                labels["error_type"] = record.exc_info[0].__name__

            timestamp_ns = str(int(record.created * 1_000_000_000))
            payload = {
                "streams": [{"stream": labels, "values": [[timestamp_ns, self.format(record)]]}]
            }
            self._queue.put_nowait(payload)
        except queue.Full:
            pass
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self._shutdown.set()
        if self._worker_thread.is_alive():
            self._worker_thread.join(timeout=5.0)
        if self._client is not None and not self._worker_thread.is_alive():
            self._client.close()
            self._client = None
        super().close()


class RequestContextFilter(logging.Filter):
    """Attach the current request id (set by RequestIDMiddleware) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        from src.middleware.request_id_middleware import get_request_id

        request_id = get_request_id()
        if request_id and not hasattr(record, "request_id"):
            record.request_id = request_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Includes the request id when present and any ``event_id`` / ``user_id``
    passed through ``extra=``.
    """

    EXTRA_FIELDS = ("request_id", "event_id", "event_type", "user_id", "subscription_id")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging() -> bool:
    """
    Configure application logging.

    Sets up:
    - Console handler (plain format in development, JSON otherwise)
    - Loki handler (if enabled)
    - Request id filter for log correlation

    Returns:
        bool: True if Loki integration was enabled, False otherwise
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()

    context_filter = RequestContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(context_filter)

    if Config.IS_DEVELOPMENT:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        console_handler.setFormatter(StructuredFormatter())

    root_logger.addHandler(console_handler)
    logger.info("📝 Console logging configured")

    loki_enabled = False
    if Config.LOKI_ENABLED:
        try:
            loki_handler = LokiLogHandler(
                loki_url=Config.LOKI_PUSH_URL,
                tags={"app": Config.SERVICE_NAME, "environment": Config.APP_ENV},
            )
            loki_handler.setLevel(logging.INFO)
            loki_handler.addFilter(context_filter)
            loki_handler.setFormatter(StructuredFormatter())
            root_logger.addHandler(loki_handler)

            logger.info(f"✅ Loki logging enabled: {Config.LOKI_PUSH_URL}")
            loki_enabled = True
        except Exception as e:
            logger.warning(f"⚠️  Failed to configure Loki logging: {e}")
    else:
        logger.info("⏭️  Loki logging disabled (LOKI_ENABLED=false)")

    # Set log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    return loki_enabled
