import pytest

from services.uploads.application.media_classifier import Buckets
from services.uploads.domain.errors import ValidationError
from services.uploads.domain.session import FileUpload, MediaKind, SessionState
from services.uploads.tests.fakes import make_config, make_service


def test_initialize_creates_session():
    service, _, repository, _ = make_service(config=make_config(max_concurrent_chunks=3))
    file = FileUpload(filename="talk.mp4", content_type="video/mp4", data=b"x" * 25)
    with service:
        result = service.initialize(file, folder="/lectures/")

    assert result.total_chunks == 3
    assert result.chunk_size == 10
    assert result.max_concurrency == 3
    assert result.bucket == Buckets.VIDEOS

    session = repository.get(result.session_id)
    assert session.original_name == "talk.mp4"
    assert session.total_size == 25
    assert session.folder == "lectures"
    assert session.media_kind is MediaKind.VIDEO
    assert session.state is SessionState.INITIALIZED
    assert session.chunk_timeout_ms == 5000


def test_generic_content_type_with_video_extension_goes_to_video_bucket():
    service, _, repository, _ = make_service()
    file = FileUpload(
        filename="screen.mkv", content_type="application/octet-stream", data=b"x" * 5
    )
    with service:
        result = service.initialize(file, folder="uploads")

    assert result.bucket == Buckets.VIDEOS
    assert repository.get(result.session_id).bucket == "videos"


@pytest.mark.parametrize(
    "file",
    [
        FileUpload(filename="cat.png", content_type="image/png", data=b"x"),
        FileUpload(filename="a.mp4", content_type="video/mp4", data=None),
        FileUpload(filename="a.mp4", content_type="video/mp4", data="not bytes"),
        FileUpload(filename="a.mp4", content_type="video/mp4", data=b""),
        FileUpload(filename="a.mp4", content_type="video/mp4", data=b"xx", size=3),
        FileUpload(filename="a.mp4", content_type="video/mp4", data=b"x" * 1001),
    ],
)
def test_invalid_files_are_rejected_before_any_session(file):
    service, storage, repository, _ = make_service()
    with service, pytest.raises(ValidationError):
        service.initialize(file)
    assert repository.get("session0001") is None
    assert storage.put_calls == []


def test_requires_chunking_uses_threshold():
    service, _, _, _ = make_service(config=make_config(chunk_threshold_bytes=20))
    with service:
        assert not service.requires_chunking(20)
        assert service.requires_chunking(21)


def test_upload_file_runs_the_whole_pipeline():
    service, storage, repository, _ = make_service()
    data = bytes(range(42))
    file = FileUpload(filename="clip.webm", content_type="video/webm", data=data)
    with service:
        result = service.upload_file(file, folder="videos")

    assert len(result.chunks) == 5
    assert result.total_size == 42
    assert result.format == "webm"
    assert repository.get(result.session_id).final_manifest_url == result.manifest_url
    assert ("videos", result.manifest_path) in storage.objects
