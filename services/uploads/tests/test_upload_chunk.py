import threading
import time

import pytest

from services.uploads.application.dto import ChunkStatus
from services.uploads.domain.errors import (
    PermanentTransferError,
    SessionNotFoundError,
    ValidationError,
)
from services.uploads.domain.session import FileUpload
from services.uploads.infrastructure.locks import InProcessSessionLocks
from services.uploads.tests.fakes import FakeStorage, make_config, make_service

DATA = bytes(range(25))


def _start(service, data=DATA, name="movie.mp4"):
    file = FileUpload(filename=name, content_type="video/mp4", data=data)
    return service.initialize(file, folder="videos").session_id


def test_upload_chunk_records_progress():
    service, storage, repository, _ = make_service()
    with service:
        session_id = _start(service)
        result = service.upload_chunk(session_id, 0, DATA[:10])

    assert result.status is ChunkStatus.UPLOADED
    assert result.attempts_used == 1
    assert result.progress_percent == pytest.approx(100 / 3)
    assert not result.is_complete
    assert result.storage_path.startswith(f"videos/chunks/{session_id}/")
    assert result.storage_path.endswith("_chunk_0000.mp4")
    assert storage.objects[("videos", result.storage_path)] == DATA[:10]
    assert repository.get(session_id).chunk_at(0).storage_path == result.storage_path


def test_second_upload_of_same_index_is_a_noop():
    service, storage, repository, _ = make_service()
    with service:
        session_id = _start(service)
        first = service.upload_chunk(session_id, 1, DATA[10:20])
        second = service.upload_chunk(session_id, 1, DATA[10:20])

    assert second.status is ChunkStatus.ALREADY_UPLOADED
    assert second.storage_path == first.storage_path
    assert len(storage.put_calls) == 1
    assert repository.get(session_id).uploaded_count == 1


def test_last_chunk_completes_session():
    service, _, _, _ = make_service()
    with service:
        session_id = _start(service)
        service.upload_chunk(session_id, 0, DATA[:10])
        service.upload_chunk(session_id, 2, DATA[20:])
        result = service.upload_chunk(session_id, 1, DATA[10:20])

    assert result.is_complete
    assert result.progress_percent == 100


def test_transient_failures_below_budget_then_success():
    storage = FakeStorage()
    service, _, _, clock = make_service(storage=storage, config=make_config(max_retries=4))
    storage.fail("_chunk_0000", times=3)
    with service:
        session_id = _start(service)
        result = service.upload_chunk(session_id, 0, DATA[:10])

    assert result.status is ChunkStatus.UPLOADED
    assert result.attempts_used == 4
    # 100ms base doubling per attempt, no jitter
    assert clock.sleeps == pytest.approx([0.1, 0.2, 0.4])


def test_exhausting_retries_raises_permanent_error_with_context():
    storage = FakeStorage()
    service, _, repository, clock = make_service(storage=storage)
    storage.fail("_chunk_0001", times=3)
    with service:
        session_id = _start(service)
        with pytest.raises(PermanentTransferError) as excinfo:
            service.upload_chunk(session_id, 1, DATA[10:20])

    error = excinfo.value
    assert error.index == 1
    assert error.attempts == 3
    assert error.size_bytes == 10
    assert error.bucket == "videos"
    assert error.timestamp is not None
    assert "ECONNRESET" not in str(error)
    assert len(clock.sleeps) == 2
    assert repository.get(session_id).uploaded_count == 0


def test_backoff_is_capped():
    storage = FakeStorage()
    config = make_config(max_retries=6, retry_base_delay_ms=300, retry_max_delay_ms=1000)
    service, _, _, clock = make_service(storage=storage, config=config)
    storage.fail("_chunk_0000", times=5)
    with service:
        service.upload_chunk(_start(service), 0, DATA[:10])

    assert clock.sleeps == pytest.approx([0.3, 0.6, 1.0, 1.0, 1.0])


def test_non_retryable_storage_error_fails_immediately():
    storage = FakeStorage()
    service, _, _, clock = make_service(storage=storage)
    storage.fail("_chunk_0000", times=1, retryable=False)
    with service:
        session_id = _start(service)
        with pytest.raises(PermanentTransferError) as excinfo:
            service.upload_chunk(session_id, 0, DATA[:10])

    assert excinfo.value.attempts == 1
    assert not excinfo.value.retryable
    assert clock.sleeps == []


def test_attempt_that_exceeds_timeout_is_retried():
    release = threading.Event()

    class SlowStorage(FakeStorage):
        def put(self, bucket, path, data, content_type):
            if "_chunk_" in path:
                release.wait(5)
            return super().put(bucket, path, data, content_type)

    config = make_config(chunk_timeout_ms=50, max_retries=2)
    service, _, _, clock = make_service(storage=SlowStorage(), config=config)
    with service:
        session_id = _start(service)
        try:
            with pytest.raises(PermanentTransferError) as excinfo:
                service.upload_chunk(session_id, 0, DATA[:10])
        finally:
            release.set()

    assert excinfo.value.attempts == 2
    assert len(clock.sleeps) == 1


def test_unknown_session_raises():
    service, _, _, _ = make_service()
    with service, pytest.raises(SessionNotFoundError):
        service.upload_chunk("missing", 0, b"x")


@pytest.mark.parametrize("index, data", [(-1, b"x" * 10), (3, b"x" * 5), (0, b"short")])
def test_invalid_index_or_length_is_rejected(index, data):
    service, storage, _, _ = make_service()
    with service:
        session_id = _start(service)
        with pytest.raises(ValidationError):
            service.upload_chunk(session_id, index, data)
    assert storage.put_calls == []


def test_concurrent_duplicates_keep_a_single_record():
    barrier = threading.Barrier(2)

    class RendezvousStorage(FakeStorage):
        def put(self, bucket, path, data, content_type):
            barrier.wait(5)
            return super().put(bucket, path, data, content_type)

    storage = RendezvousStorage()
    service, _, repository, _ = make_service(storage=storage)
    results = []
    with service:
        session_id = _start(service)

        def submit():
            results.append(service.upload_chunk(session_id, 0, DATA[:10]))

        threads = [threading.Thread(target=submit) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

    statuses = sorted(result.status.value for result in results)
    assert statuses == ["already_uploaded", "uploaded"]
    session = repository.get(session_id)
    assert session.uploaded_count == 1
    # The losing write is removed; the recorded object stays.
    assert storage.chunk_paths() == [session.chunk_at(0).storage_path]


def test_hung_orphan_removal_does_not_block_the_session():
    barrier = threading.Barrier(2)
    removing = threading.Event()
    release = threading.Event()
    locks = InProcessSessionLocks()
    held_during_remove = []

    class HangingRemoveStorage(FakeStorage):
        def put(self, bucket, path, data, content_type):
            if "_chunk_0000" in path:
                barrier.wait(5)
            return super().put(bucket, path, data, content_type)

        def remove(self, bucket, paths):
            session_id = paths[0].split("/")[2]
            held_during_remove.append(locks.is_held(session_id))
            removing.set()
            release.wait(5)
            return super().remove(bucket, paths)

    config = make_config(storage_operation_timeout_ms=200)
    service, storage, repository, _ = make_service(
        storage=HangingRemoveStorage(), config=config, locks=locks
    )
    results = []
    with service:
        session_id = _start(service)

        def submit():
            results.append(service.upload_chunk(session_id, 0, DATA[:10]))

        threads = [threading.Thread(target=submit) for _ in range(2)]
        try:
            for thread in threads:
                thread.start()
            assert removing.wait(5)

            started = time.monotonic()
            other = service.upload_chunk(session_id, 1, DATA[10:20])
            elapsed = time.monotonic() - started

            for thread in threads:
                thread.join(5)
        finally:
            release.set()

    assert elapsed < 1.0
    assert other.status is ChunkStatus.UPLOADED
    assert held_during_remove == [False]
    statuses = sorted(result.status.value for result in results)
    assert statuses == ["already_uploaded", "uploaded"]
    assert repository.get(session_id).uploaded_count == 2


def test_closing_the_service_waits_for_abandoned_storage_calls():
    finished = threading.Event()

    class SlowStorage(FakeStorage):
        def put(self, bucket, path, data, content_type):
            time.sleep(0.3)
            stored = super().put(bucket, path, data, content_type)
            finished.set()
            return stored

    config = make_config(chunk_timeout_ms=50, max_retries=1)
    service, storage, _, _ = make_service(storage=SlowStorage(), config=config)
    with service:
        session_id = _start(service)
        with pytest.raises(PermanentTransferError):
            service.upload_chunk(session_id, 0, DATA[:10])
        assert not finished.is_set()

    assert finished.is_set()
    assert len(storage.chunk_paths()) == 1
