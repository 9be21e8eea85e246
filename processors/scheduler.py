"""
Asynchronous isosurface extraction in isolated worker processes.

Each request runs in its own single-use process: the scheduler validates the
request, moves the byte buffer out of the caller's message, submits it and
shuts the pool down without waiting, so the process exits once it has
delivered its one result.  Completion is exposed as a ``concurrent.futures``
future (``ExtractionTicket``) or awaited with ``ExtractionScheduler.extract``.
"""

import asyncio
import concurrent.futures
import itertools
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional

from config import WORKER_MAX_WORKERS
from core.base import Volume
from core.dto import IsoRequest, IsoResult
from core.errors import WorkerFailure
from core.progress import StatusSink, emit_status
from processors.extraction_worker import run_extraction, validate_request_message

ExecutorFactory = Callable[[], concurrent.futures.Executor]


def build_request_message(volume: Volume, request: IsoRequest) -> Dict[str, Any]:
    """
    Request message for ``request`` on ``volume``.

    The physical threshold is quantized through ``Volume.quantize`` and the
    message carries a detached copy of the byte buffer.
    """
    return {
        "dims": list(volume.dims),
        "spacing": list(volume.spacing),
        "origin": list(volume.origin),
        "thresh8": volume.quantize(request.threshold),
        "data": volume.copy_bytes(),
        "valueRange": list(volume.value_range),
        "qualityStride": request.quality_stride,
    }


@dataclass(frozen=True)
class ExtractionTicket:
    """
    Handle for one in-flight extraction.

    ``future`` resolves to an ``IsoResult`` or raises ``WorkerFailure``.
    """
    request_id: int
    future: concurrent.futures.Future

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> IsoResult:
        return self.future.result(timeout)


def _default_executor() -> concurrent.futures.Executor:
    return concurrent.futures.ProcessPoolExecutor(max_workers=WORKER_MAX_WORKERS)


class ExtractionScheduler:
    """
    Dispatches extraction requests to isolated processes.

    No cancellation and no ordering arbitration: concurrent requests complete
    in whatever order their workers finish, identified by ``request_id``.
    """

    def __init__(self, executor_factory: Optional[ExecutorFactory] = None,
                 status_callback: Optional[StatusSink] = None):
        """
        Args:
            executor_factory: Builds the executor for one request.  Defaults to
                a single-worker ``ProcessPoolExecutor``.
            status_callback: Optional status sink.
        """
        self._executor_factory = executor_factory or _default_executor
        self._status_callback = status_callback
        self._ids = itertools.count(1)

    def submit(self, message: Dict[str, Any]) -> ExtractionTicket:
        """
        Validate ``message`` and start extraction without blocking.

        The ``data`` entry is removed from ``message``: ownership of the
        buffer passes to the worker.

        Raises:
            InvalidVolumeMetadata / DataShapeMismatch: before any worker starts.
        """
        validate_request_message(message)
        request_id = next(self._ids)

        payload = dict(message)
        payload["data"] = message.pop("data")

        outer: concurrent.futures.Future = concurrent.futures.Future()
        outer.set_running_or_notify_cancel()
        try:
            executor = self._executor_factory()
            inner = executor.submit(run_extraction, payload)
            executor.shutdown(wait=False)
        except Exception as exc:
            outer.set_exception(WorkerFailure(str(exc), request_id, type(exc).__name__))
            return ExtractionTicket(request_id, outer)

        inner.add_done_callback(lambda f: self._deliver(request_id, f, outer))
        print(f"[Scheduler] Request {request_id} submitted (thresh8={payload['thresh8']}, "
              f"stride={payload.get('qualityStride')})")
        return ExtractionTicket(request_id, outer)

    def _deliver(self, request_id: int, inner: concurrent.futures.Future,
                 outer: concurrent.futures.Future) -> None:
        try:
            response = inner.result()
        except BrokenProcessPool as exc:
            outer.set_exception(WorkerFailure(f"Worker process died: {exc}", request_id, type(exc).__name__))
            return
        except Exception as exc:
            outer.set_exception(WorkerFailure(str(exc), request_id, type(exc).__name__))
            return

        if not isinstance(response, Mapping):
            outer.set_exception(WorkerFailure(
                f"Malformed worker response: expected a mapping, got {type(response).__name__}",
                request_id, type(response).__name__))
            return
        if "error" in response:
            outer.set_exception(WorkerFailure(response["error"], request_id, response.get("error_type")))
            return
        try:
            outer.set_result(IsoResult.from_message(response))
        except (TypeError, ValueError) as exc:
            outer.set_exception(WorkerFailure(f"Malformed worker response: {exc}", request_id, type(exc).__name__))

    def submit_request(self, volume: Volume, request: IsoRequest) -> ExtractionTicket:
        """Build the message for ``request`` on ``volume`` and submit it."""
        return self.submit(build_request_message(volume, request))

    async def wait(self, ticket: ExtractionTicket) -> IsoResult:
        """
        Await ``ticket`` on the running event loop; resumes only on delivery.

        Raises:
            WorkerFailure: the worker reported or suffered a failure.
        """
        try:
            return await asyncio.wrap_future(ticket.future)
        except WorkerFailure as exc:
            emit_status(self._status_callback, f"Extraction request {ticket.request_id} failed: {exc}")
            raise

    async def extract(self, message: Dict[str, Any]) -> IsoResult:
        """Submit ``message`` and await its result."""
        return await self.wait(self.submit(message))


def iter_completed(tickets: Iterable[ExtractionTicket],
                   timeout: Optional[float] = None) -> Iterator[ExtractionTicket]:
    """Yield tickets as their extractions finish."""
    by_future = {t.future: t for t in tickets}
    for future in concurrent.futures.as_completed(by_future, timeout=timeout):
        yield by_future[future]
