"""
Tests for the extraction request handler and the worker-process scheduler.
"""

import asyncio
import concurrent.futures
from concurrent.futures.process import BrokenProcessPool

import numpy as np
import pytest

from core import DataShapeMismatch, InvalidVolumeMetadata, IsoRequest, Volume, WorkerFailure
from processors.extraction_worker import run_extraction, validate_request_message
from processors.marching_tetrahedra import extract_isosurface
from processors.scheduler import ExtractionScheduler, build_request_message, iter_completed


def _make_volume(hot: bool = True) -> Volume:
    row = np.array([0, 85, 170, 255] if hot else [0, 0, 0, 0], dtype=np.uint8)
    grid = np.broadcast_to(row, (3, 3, 4))
    return Volume(dims=(4, 3, 3), spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0),
                  data=grid.reshape(-1), value_range=(0.0, 100.0))


def _thread_factory():
    return concurrent.futures.ThreadPoolExecutor(max_workers=1)


class _FakeExecutor:
    """Executor stand-in whose single submission resolves immediately."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.shutdown_calls = []

    def submit(self, fn, *args):
        future = concurrent.futures.Future()
        if isinstance(self.outcome, BaseException):
            future.set_exception(self.outcome)
        else:
            future.set_result(self.outcome)
        return future

    def shutdown(self, wait=True):
        self.shutdown_calls.append(wait)


# ---------------------------------------------------------------------------
# Request messages
# ---------------------------------------------------------------------------

def test_build_request_message():
    vol = _make_volume()
    msg = build_request_message(vol, IsoRequest(threshold=50.0, quality_stride=2))
    assert msg["dims"] == [4, 3, 3]
    assert msg["thresh8"] == 128
    assert msg["qualityStride"] == 2
    assert msg["valueRange"] == [0.0, 100.0]
    assert isinstance(msg["data"], bytes)
    assert len(msg["data"]) == 36


def test_validate_request_message():
    msg = build_request_message(_make_volume(), IsoRequest(threshold=50.0))
    vol = validate_request_message(msg)
    assert vol.dims == (4, 3, 3)

    for key in ("dims", "spacing", "data", "valueRange", "thresh8"):
        broken = dict(msg)
        del broken[key]
        with pytest.raises(InvalidVolumeMetadata):
            validate_request_message(broken)

    with pytest.raises(InvalidVolumeMetadata):
        validate_request_message(dict(msg, thresh8=300))
    with pytest.raises(InvalidVolumeMetadata):
        validate_request_message(dict(msg, qualityStride=7))
    with pytest.raises(DataShapeMismatch):
        validate_request_message(dict(msg, data=bytes(35)))


def test_run_extraction_reports_errors_as_responses():
    response = run_extraction({"dims": [2, 2, 2]})
    assert set(response) == {"error", "error_type"}
    assert response["error_type"] == "InvalidVolumeMetadata"


def test_run_extraction_empty_surface():
    msg = build_request_message(_make_volume(hot=False), IsoRequest(threshold=50.0))
    response = run_extraction(msg)
    assert "error" not in response
    assert response["positions"].size == 0
    assert response["normals"].size == 0


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

def test_submit_moves_buffer_out_of_message():
    scheduler = ExtractionScheduler(executor_factory=_thread_factory)
    msg = build_request_message(_make_volume(), IsoRequest(threshold=50.0))
    ticket = scheduler.submit(msg)
    assert "data" not in msg
    assert not ticket.result(timeout=30).is_empty


def test_invalid_request_fails_before_any_worker():
    created = []

    def factory():
        created.append(1)
        return _thread_factory()

    scheduler = ExtractionScheduler(executor_factory=factory)
    msg = build_request_message(_make_volume(), IsoRequest(threshold=50.0))
    msg["data"] = msg["data"][:-1]
    with pytest.raises(DataShapeMismatch):
        scheduler.submit(msg)
    assert created == []


def test_result_matches_direct_extraction():
    vol = _make_volume()
    scheduler = ExtractionScheduler(executor_factory=_thread_factory)
    result = scheduler.submit_request(vol, IsoRequest(threshold=50.0, quality_stride=1)).result(timeout=30)
    direct = extract_isosurface(vol, 128, stride=1)
    np.testing.assert_array_equal(result.positions, direct.positions)
    np.testing.assert_array_equal(result.normals, direct.normals)
    np.testing.assert_array_equal(result.scalars, direct.scalars)


def test_request_ids_increase():
    scheduler = ExtractionScheduler(executor_factory=_thread_factory)
    vol = _make_volume()
    tickets = [scheduler.submit_request(vol, IsoRequest(threshold=t)) for t in (30.0, 50.0, 70.0)]
    assert [t.request_id for t in tickets] == [1, 2, 3]
    finished = list(iter_completed(tickets, timeout=30))
    assert sorted(t.request_id for t in finished) == [1, 2, 3]
    assert all(t.done() for t in tickets)


def test_error_response_becomes_worker_failure():
    fake = _FakeExecutor({"error": "boom", "error_type": "RuntimeError"})
    scheduler = ExtractionScheduler(executor_factory=lambda: fake)
    ticket = scheduler.submit_request(_make_volume(), IsoRequest(threshold=50.0))
    with pytest.raises(WorkerFailure) as info:
        ticket.result(timeout=5)
    assert info.value.request_id == ticket.request_id
    assert info.value.error_type == "RuntimeError"
    assert fake.shutdown_calls == [False]


def test_dead_worker_becomes_worker_failure():
    scheduler = ExtractionScheduler(executor_factory=lambda: _FakeExecutor(BrokenProcessPool("killed")))
    ticket = scheduler.submit_request(_make_volume(), IsoRequest(threshold=50.0))
    with pytest.raises(WorkerFailure) as info:
        ticket.result(timeout=5)
    assert info.value.error_type == "BrokenProcessPool"


def test_malformed_response_becomes_worker_failure():
    bad = {"positions": np.zeros(4, dtype=np.float32), "normals": np.zeros(4, dtype=np.float32)}
    scheduler = ExtractionScheduler(executor_factory=lambda: _FakeExecutor(bad))
    ticket = scheduler.submit_request(_make_volume(), IsoRequest(threshold=50.0))
    with pytest.raises(WorkerFailure):
        ticket.result(timeout=5)


@pytest.mark.parametrize("response", [None, "done", [1, 2, 3], 42])
def test_non_mapping_response_becomes_worker_failure(response):
    scheduler = ExtractionScheduler(executor_factory=lambda: _FakeExecutor(response))
    ticket = scheduler.submit_request(_make_volume(), IsoRequest(threshold=50.0))
    with pytest.raises(WorkerFailure) as info:
        ticket.result(timeout=5)
    assert info.value.request_id == ticket.request_id
    assert "expected a mapping" in str(info.value)


def test_extract_awaits_result():
    scheduler = ExtractionScheduler(executor_factory=_thread_factory)
    msg = build_request_message(_make_volume(), IsoRequest(threshold=50.0))
    result = asyncio.run(scheduler.extract(msg))
    assert result.triangle_count > 0


def test_wait_reports_failure_and_reraises():
    messages = []
    scheduler = ExtractionScheduler(
        executor_factory=lambda: _FakeExecutor({"error": "boom", "error_type": "RuntimeError"}),
        status_callback=messages.append,
    )
    ticket = scheduler.submit_request(_make_volume(), IsoRequest(threshold=50.0))
    with pytest.raises(WorkerFailure):
        asyncio.run(scheduler.wait(ticket))
    assert messages and messages[0].startswith("Extraction request 1 failed")


def test_process_worker_round_trip():
    vol = _make_volume()
    scheduler = ExtractionScheduler()
    result = scheduler.submit_request(vol, IsoRequest(threshold=50.0, quality_stride=1)).result(timeout=120)
    direct = extract_isosurface(vol, 128, stride=1)
    np.testing.assert_array_equal(result.positions, direct.positions)
