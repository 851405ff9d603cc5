from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from beamshare.uploads.registry import (
    InMemoryUploadSessionRegistry,
    InvalidChunkIndexError,
    UploadSessionFinishedError,
    UploadSessionNotFoundError,
)
from beamshare.uploads.types import ChunkProgress


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def test_create_computes_chunk_count() -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=25, owner_id="u1", chunk_size=10)
    assert session.total_chunks == 3
    assert session.received_chunks == frozenset()
    assert session.expected_chunk_length(0) == 10
    assert session.expected_chunk_length(2) == 5
    assert registry.count() == 1


def test_create_issues_unique_ids() -> None:
    registry = InMemoryUploadSessionRegistry()
    ids = {registry.create(filename="a.bin", size=1, owner_id="u1", chunk_size=10).id for _ in range(50)}
    assert len(ids) == 50


def test_out_of_order_chunks_complete_once() -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=25, owner_id="u1", chunk_size=10)

    assert registry.record_chunk(session.id, 2).progress == ChunkProgress.PENDING
    assert registry.record_chunk(session.id, 0).progress == ChunkProgress.PENDING
    result = registry.record_chunk(session.id, 1)
    assert result.progress == ChunkProgress.COMPLETE
    assert result.received_chunks == 3

    with pytest.raises(UploadSessionFinishedError):
        registry.record_chunk(session.id, 1)


def test_megabyte_upload_completes_on_fourth_distinct_chunk() -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=1_000_000, owner_id="u1", chunk_size=262144)
    assert session.total_chunks == 4
    assert session.expected_chunk_length(3) == 1_000_000 - 3 * 262144

    progress = [registry.record_chunk(session.id, index).progress for index in (1, 0, 3)]
    assert progress == [ChunkProgress.PENDING] * 3
    assert registry.record_chunk(session.id, 0).progress == ChunkProgress.PENDING

    result = registry.record_chunk(session.id, 2)
    assert result.progress == ChunkProgress.COMPLETE
    assert result.received_chunks == 4
    with pytest.raises(UploadSessionFinishedError):
        registry.record_chunk(session.id, 2)


def test_record_chunk_is_idempotent_for_retries() -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=25, owner_id="u1", chunk_size=10)
    registry.record_chunk(session.id, 0)
    result = registry.record_chunk(session.id, 0)
    assert result.received_chunks == 1
    assert result.progress == ChunkProgress.PENDING


@pytest.mark.parametrize("chunk_index", [-1, 3, 100])
def test_record_chunk_rejects_out_of_range_index(chunk_index: int) -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=25, owner_id="u1", chunk_size=10)
    with pytest.raises(InvalidChunkIndexError):
        registry.record_chunk(session.id, chunk_index)
    assert registry.get(session.id).received_chunks == frozenset()


def test_unknown_and_removed_sessions_are_not_found() -> None:
    registry = InMemoryUploadSessionRegistry()
    with pytest.raises(UploadSessionNotFoundError):
        registry.get("missing-session")

    session = registry.create(filename="a.bin", size=5, owner_id="u1", chunk_size=10)
    removed = registry.remove(session.id)
    assert removed is not None
    assert registry.remove(session.id) is None
    with pytest.raises(UploadSessionNotFoundError):
        registry.record_chunk(session.id, 0)


def test_concurrent_final_chunks_report_completion_exactly_once() -> None:
    registry = InMemoryUploadSessionRegistry()
    total = 32
    session = registry.create(filename="a.bin", size=total, owner_id="u1", chunk_size=1)

    barrier = threading.Barrier(total)
    outcomes: list[str] = []
    lock = threading.Lock()

    def upload(index: int) -> None:
        barrier.wait()
        try:
            result = registry.record_chunk(session.id, index)
            outcome = result.progress.value
        except UploadSessionFinishedError:
            outcome = "finished"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=upload, args=(index,)) for index in range(total)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("complete") == 1
    assert outcomes.count("pending") == total - 1


def test_mark_finished_blocks_further_chunks() -> None:
    registry = InMemoryUploadSessionRegistry()
    session = registry.create(filename="a.bin", size=20, owner_id="u1", chunk_size=10)
    registry.record_chunk(session.id, 0)
    assert registry.mark_finished(session.id).finished
    with pytest.raises(UploadSessionFinishedError):
        registry.record_chunk(session.id, 1)


def test_reap_idle_removes_only_stale_unclaimed_sessions() -> None:
    clock = FakeClock()
    registry = InMemoryUploadSessionRegistry(clock=clock)
    stale = registry.create(filename="stale.bin", size=20, owner_id="u1", chunk_size=10)
    completing = registry.create(filename="done.bin", size=10, owner_id="u1", chunk_size=10)
    registry.record_chunk(completing.id, 0)

    clock.advance(120)
    fresh = registry.create(filename="fresh.bin", size=20, owner_id="u1", chunk_size=10)

    reaped = registry.reap_idle(60)

    assert [session.id for session in reaped] == [stale.id]
    assert registry.get(fresh.id).id == fresh.id
    assert registry.get(completing.id).id == completing.id
    with pytest.raises(UploadSessionNotFoundError):
        registry.get(stale.id)


def test_recording_a_chunk_refreshes_activity() -> None:
    clock = FakeClock()
    registry = InMemoryUploadSessionRegistry(clock=clock)
    session = registry.create(filename="a.bin", size=20, owner_id="u1", chunk_size=10)
    clock.advance(50)
    registry.record_chunk(session.id, 0)
    clock.advance(50)
    assert registry.reap_idle(60) == []
