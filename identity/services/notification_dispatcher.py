"""Fire-and-forget email delivery with retries.

``dispatch`` hands the request to a worker thread and returns at once. The
worker tries the mailer up to ``max_attempts`` times, waiting according to the
backoff schedule between attempts, and reports every attempt to the request's
callback.
"""

import enum
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = [60.0, 300.0, 900.0]


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    html_content: str
    context: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryMetadata:
    type: str
    reference_id: int
    token: str
    recipient: str


@dataclass
class DeliveryResult:
    metadata: DeliveryMetadata
    attempt: int
    status: DeliveryStatus
    error: str | None = None
    final: bool = False


@dataclass
class DeliveryRequest:
    message: EmailMessage
    metadata: DeliveryMetadata
    callback: Callable[[DeliveryResult], None] | None = None
    max_attempts: int | None = None
    backoff: list[float] | None = None


class Mailer(Protocol):
    def send(self, message: EmailMessage) -> None: ...


class NotificationDispatcher:
    def __init__(
        self,
        mailer: Mailer | None,
        *,
        max_attempts: int = 3,
        backoff: list[float] | None = None,
        max_workers: int = 2,
    ):
        self.mailer = mailer
        self.default_max_attempts = max_attempts if max_attempts > 0 else 3
        self.default_backoff = list(backoff) if backoff else list(DEFAULT_BACKOFF)
        self._stop = threading.Event()
        self._closed = False
        self._exec = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def dispatch(self, request: DeliveryRequest) -> Future | None:
        """Queue a delivery. Never raises for delivery problems."""
        if self._closed:
            logger.warning(
                f"Dispatcher stopped, dropping {request.metadata.type} "
                f"message for reference {request.metadata.reference_id}"
            )
            return None
        return self._exec.submit(self._deliver, request)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.

        With ``wait=True`` queued and in-flight deliveries run to completion,
        retries and backoff included. With ``wait=False`` queued deliveries are
        cancelled and in-flight ones give up at their next backoff wait.
        """
        self._closed = True
        if not wait:
            self._stop.set()
        self._exec.shutdown(wait=wait, cancel_futures=not wait)
        self._stop.set()

    def _deliver(self, request: DeliveryRequest) -> None:
        meta = request.metadata
        if self.mailer is None:
            self._report(request, DeliveryResult(
                metadata=meta, attempt=0, status=DeliveryStatus.FAILED,
                error="no mailer configured", final=True,
            ))
            return

        max_attempts = request.max_attempts or self.default_max_attempts
        backoff = request.backoff or self.default_backoff

        for attempt in range(1, max_attempts + 1):
            try:
                self.mailer.send(request.message)
            except Exception as e:
                final = attempt == max_attempts
                logger.warning(
                    f"Delivery of {meta.type} {meta.reference_id} to {meta.recipient} "
                    f"failed (attempt {attempt}/{max_attempts}): {e}"
                )
                self._report(request, DeliveryResult(
                    metadata=meta, attempt=attempt, status=DeliveryStatus.FAILED,
                    error=str(e), final=final,
                ))
                if final:
                    return
                delay = backoff[min(attempt - 1, len(backoff) - 1)]
                if self._stop.wait(delay):
                    logger.info(f"Dispatcher stopping, abandoning retries for {meta.type} {meta.reference_id}")
                    return
                continue

            logger.info(f"Delivered {meta.type} {meta.reference_id} to {meta.recipient} (attempt {attempt})")
            self._report(request, DeliveryResult(
                metadata=meta, attempt=attempt, status=DeliveryStatus.SENT, final=True,
            ))
            return

    @staticmethod
    def _report(request: DeliveryRequest, result: DeliveryResult) -> None:
        if request.callback is None:
            return
        try:
            request.callback(result)
        except Exception:
            logger.exception(f"Delivery callback failed for {result.metadata.type} {result.metadata.reference_id}")
