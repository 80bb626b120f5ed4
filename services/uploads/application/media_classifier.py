"""Media type detection and bucket routing.

Rules are evaluated in a fixed order and the first match wins:

1. ``ExplicitContentTypeRule``: the declared content type names the kind.
2. ``ExtensionRule``: the filename carries a recognized extension.
3. ``GenericContentTypeRule``: an opaque content type (``application/octet-stream``
   and friends) paired with a container extension browsers tend to misreport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Optional, Protocol, Sequence

from services.uploads.domain.session import MediaKind

LOGGER = logging.getLogger(__name__)

VIDEO_CONTENT_TYPES = frozenset(
    {
        "video/mp4",
        "video/mpeg",
        "video/quicktime",
        "video/x-msvideo",
        "video/webm",
        "video/x-matroska",
        "video/x-flv",
        "video/x-ms-wmv",
    }
)
IMAGE_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)
DOCUMENT_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
GENERIC_CONTENT_TYPES = frozenset(
    {"", "application/octet-stream", "binary/octet-stream", "application/unknown"}
)

VIDEO_EXTENSIONS = frozenset({"mp4", "mov", "avi", "wmv", "mkv", "flv", "webm"})
MISREPORTED_VIDEO_EXTENSIONS = frozenset({"mkv", "m4v", "mts", "m2ts", "ts", "3gp"})


class Buckets:
    IMAGES = "images"
    VIDEOS = "videos"
    DOCUMENTS = "documents"
    PROFILES = "profiles"
    COURSES = "courses"
    CHAT = "chat-files"


@dataclass(frozen=True)
class Classification:
    kind: MediaKind
    matched_by: Optional[str]

    @property
    def matched(self) -> bool:
        return self.matched_by is not None


class MediaRule(Protocol):
    name: str

    def matches(self, content_type: str, extension: str) -> bool: ...


def normalize_content_type(content_type: str | None) -> str:
    """``"Video/WebM; codecs=vp9"`` -> ``"video/webm"``."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def file_extension(filename: str | None) -> str:
    return PurePosixPath(filename or "").suffix.lstrip(".").lower()


class ExplicitContentTypeRule:
    name = "content_type"

    def __init__(self, content_types: Iterable[str], prefix: str | None = None) -> None:
        self._content_types = frozenset(content_types)
        self._prefix = prefix

    def matches(self, content_type: str, extension: str) -> bool:
        if content_type in self._content_types:
            return True
        return bool(self._prefix) and content_type.startswith(self._prefix)


class ExtensionRule:
    name = "extension"

    def __init__(self, extensions: Iterable[str]) -> None:
        self._extensions = frozenset(extensions)

    def matches(self, content_type: str, extension: str) -> bool:
        return extension in self._extensions


class GenericContentTypeRule:
    name = "generic_content_type"

    def __init__(
        self,
        extensions: Iterable[str],
        generic_types: Iterable[str] = GENERIC_CONTENT_TYPES,
    ) -> None:
        self._extensions = frozenset(extensions)
        self._generic_types = frozenset(generic_types)

    def matches(self, content_type: str, extension: str) -> bool:
        return content_type in self._generic_types and extension in self._extensions


class MediaClassifier:
    """Decides whether a file is of ``kind`` using an ordered rule list."""

    def __init__(self, kind: MediaKind, rules: Sequence[MediaRule]) -> None:
        self.kind = kind
        self._rules = tuple(rules)

    def classify(self, content_type: str | None, filename: str | None) -> Classification:
        normalized = normalize_content_type(content_type)
        extension = file_extension(filename)
        for rule in self._rules:
            if rule.matches(normalized, extension):
                return Classification(kind=self.kind, matched_by=rule.name)
        return Classification(kind=MediaKind.OTHER, matched_by=None)


def create_video_classifier() -> MediaClassifier:
    return MediaClassifier(
        MediaKind.VIDEO,
        [
            ExplicitContentTypeRule(VIDEO_CONTENT_TYPES, prefix="video/"),
            ExtensionRule(VIDEO_EXTENSIONS),
            GenericContentTypeRule(MISREPORTED_VIDEO_EXTENSIONS),
        ],
    )


def create_document_classifier() -> MediaClassifier:
    return MediaClassifier(
        MediaKind.DOCUMENT, [ExplicitContentTypeRule(DOCUMENT_CONTENT_TYPES)]
    )


def create_image_classifier() -> MediaClassifier:
    return MediaClassifier(MediaKind.IMAGE, [ExplicitContentTypeRule(IMAGE_CONTENT_TYPES)])


class BucketSelector:
    """Routes a file to a bucket by media kind, then by folder for images."""

    def __init__(self, classifiers: Sequence[MediaClassifier] | None = None) -> None:
        self._classifiers = tuple(
            classifiers
            or (
                create_video_classifier(),
                create_document_classifier(),
                create_image_classifier(),
            )
        )

    def classify(self, content_type: str | None, filename: str | None) -> Classification:
        for classifier in self._classifiers:
            result = classifier.classify(content_type, filename)
            if result.matched:
                return result
        return Classification(kind=MediaKind.OTHER, matched_by=None)

    def select(
        self, content_type: str | None, folder: str = "", filename: str | None = None
    ) -> str:
        classification = self.classify(content_type, filename)
        bucket = bucket_for(classification.kind, folder)
        LOGGER.debug(
            "Routing %s (%s) to bucket %s via %s",
            filename,
            content_type,
            bucket,
            classification.matched_by or "fallback",
        )
        return bucket


def bucket_for(kind: MediaKind, folder: str = "") -> str:
    if kind is MediaKind.VIDEO:
        return Buckets.VIDEOS
    if kind is MediaKind.DOCUMENT:
        return Buckets.DOCUMENTS
    folder = (folder or "").lower()
    if kind is MediaKind.IMAGE:
        if "profile" in folder:
            return Buckets.PROFILES
        if "course" in folder:
            return Buckets.COURSES
        if "chat" in folder:
            return Buckets.CHAT
    return Buckets.IMAGES
