"""Upload a local media file through the configured storage and database.

    python -m services.uploads.run_upload ./clip.mkv --folder videos
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from services.uploads.domain.errors import UploadError
from services.uploads.domain.session import FileUpload
from services.uploads.main import build_service


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", type=Path, help="File to upload")
    parser.add_argument("--folder", default="videos", help="Destination folder")
    parser.add_argument(
        "--content-type",
        default=None,
        help="Override the content type guessed from the file name",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )

    content_type = (
        args.content_type
        or mimetypes.guess_type(args.path.name)[0]
        or "application/octet-stream"
    )
    data = args.path.read_bytes()
    file = FileUpload(filename=args.path.name, content_type=content_type, data=data)

    with build_service() as service:
        if not service.requires_chunking(len(data)):
            logging.info(
                "%s is below the chunking threshold; uploading in chunks anyway",
                args.path.name,
            )
        try:
            result = service.upload_file(file, folder=args.folder)
        except UploadError as exc:
            logging.error("Upload failed: %s", exc)
            return 1

    print(result.manifest_url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
