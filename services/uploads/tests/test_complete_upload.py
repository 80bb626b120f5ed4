import json

import pytest

from services.uploads.domain.errors import (
    IncompleteUploadError,
    ManifestWriteError,
    SessionNotFoundError,
)
from services.uploads.domain.manifest import CompletionStatus
from services.uploads.domain.session import FileUpload, SessionState
from services.uploads.tests.fakes import (
    FakeStorage,
    RecordingPublisher,
    make_config,
    make_service,
)

DATA = bytes(range(25))


def _uploaded(service, data=DATA):
    file = FileUpload(filename="movie.mkv", content_type="video/x-matroska", data=data)
    session_id = service.initialize(file).session_id
    service.upload_all(session_id, data)
    return session_id


def _manifest_puts(storage):
    return [path for path in storage.put_calls if "/manifests/" in path]


def test_complete_writes_ordered_manifest():
    publisher = RecordingPublisher()
    service, storage, repository, _ = make_service(publisher=publisher)
    with service:
        session_id = _uploaded(service)
        result = service.complete(session_id)

    assert result.status is CompletionStatus.COMPLETED
    assert result.manifest_persisted is True
    assert result.format == "mkv"
    assert result.total_size == 25
    assert result.manifest_path == f"videos/manifests/{session_id}_manifest.json"
    assert result.manifest_url == f"https://cdn.test/videos/{result.manifest_path}"
    assert result.stats.total_attempts == 3
    assert result.stats.average_attempts == 1.0

    payload = json.loads(storage.objects[("videos", result.manifest_path)])
    assert [chunk["index"] for chunk in payload["chunks"]] == [0, 1, 2]
    assert [chunk["size"] for chunk in payload["chunks"]] == [10, 10, 5]
    assert payload["originalFilename"] == "movie.mkv"
    assert payload["totalUploadAttempts"] == 3

    session = repository.get(session_id)
    assert session.final_manifest_url == result.manifest_url
    assert session.completed_at is not None
    assert session.state is SessionState.COMPLETED
    assert (session_id, "complete", 100.0) in publisher.events


def test_complete_is_idempotent():
    service, storage, _, _ = make_service()
    with service:
        session_id = _uploaded(service)
        first = service.complete(session_id)
        second = service.complete(session_id)

    assert second.status is CompletionStatus.ALREADY_COMPLETED
    assert second.manifest_url == first.manifest_url
    assert second.chunk_urls == first.chunk_urls
    assert len(_manifest_puts(storage)) == 1


def test_manifest_urls_follow_index_order_not_arrival_order():
    service, _, _, _ = make_service()
    with service:
        file = FileUpload(filename="a.mp4", content_type="video/mp4", data=DATA)
        session_id = service.initialize(file).session_id
        for index in (2, 0, 1):
            service.upload_chunk(session_id, index, DATA[index * 10 : index * 10 + 10])
        result = service.complete(session_id)

    assert [chunk.index for chunk in result.chunks] == [0, 1, 2]
    assert all("_chunk_000%d" % i in url for i, url in enumerate(result.chunk_urls))


def test_incomplete_upload_cannot_complete():
    service, _, _, _ = make_service()
    with service:
        file = FileUpload(filename="a.mp4", content_type="video/mp4", data=DATA)
        session_id = service.initialize(file).session_id
        service.upload_chunk(session_id, 0, DATA[:10])
        with pytest.raises(IncompleteUploadError) as excinfo:
            service.complete(session_id)

    assert excinfo.value.uploaded == 1
    assert excinfo.value.total == 3
    assert "33.33%" in str(excinfo.value)


def test_manifest_write_failure_is_not_fatal_by_default():
    storage = FakeStorage()
    storage.fail("/manifests/", times=100)
    service, _, repository, _ = make_service(storage=storage)
    with service:
        session_id = _uploaded(service)
        result = service.complete(session_id)

    assert result.status is CompletionStatus.COMPLETED
    assert result.manifest_persisted is False
    assert repository.get(session_id).final_manifest_url == result.manifest_url


def test_manifest_write_failure_can_be_made_fatal():
    storage = FakeStorage()
    storage.fail("/manifests/", times=1)
    config = make_config(require_manifest_write=True)
    service, _, repository, _ = make_service(storage=storage, config=config)
    with service:
        session_id = _uploaded(service)
        with pytest.raises(ManifestWriteError):
            service.complete(session_id)
        assert repository.get(session_id).state is SessionState.ALL_CHUNKS_PRESENT

        result = service.complete(session_id)

    assert result.manifest_persisted is True


def test_complete_unknown_session():
    service, _, _, _ = make_service()
    with service, pytest.raises(SessionNotFoundError):
        service.complete("nope")
