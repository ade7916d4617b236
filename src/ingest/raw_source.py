"""Read-only byte sources for import.

This module opens local files, in-memory buffers, or S3 objects as
re-openable byte sources with a size, a label, and an extension hint.
Sources never mutate or close caller-owned data.
"""

from __future__ import annotations

import io
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Callable, Protocol, TypeVar

from core.config import DocportConfig
from core.errors import DecodeError, DocportDependencyError
from core.logging_config import get_logger
from core.s3_uri import S3Location, parse_s3_uri

_LOGGER = get_logger(__name__)
_T = TypeVar("_T")


class RawSource(Protocol):
    """Byte source consumed by the sniffer and decoders."""

    @property
    def label(self) -> str: ...

    @property
    def size(self) -> int: ...

    @property
    def extension(self) -> str | None: ...

    def read_prefix(self, length: int) -> bytes: ...

    def open(self) -> BinaryIO: ...


class FileSource:
    """Local file source."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def label(self) -> str:
        return str(self._path)

    @property
    def size(self) -> int:
        return self._path.stat().st_size

    @property
    def extension(self) -> str | None:
        return _normalize_extension(self._path.suffix)

    def read_prefix(self, length: int) -> bytes:
        with self._path.open("rb") as handle:
            return handle.read(length)

    def open(self) -> BinaryIO:
        return self._path.open("rb")


class BytesSource:
    """In-memory source, used for archive entries and SDK callers."""

    def __init__(self, data: bytes, label: str, extension: str | None = None) -> None:
        self._data = data
        self._label = label
        self._extension = _normalize_extension(extension) if extension else None

    @property
    def label(self) -> str:
        return self._label

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def extension(self) -> str | None:
        return self._extension

    def read_prefix(self, length: int) -> bytes:
        return self._data[:length]

    def open(self) -> BinaryIO:
        return io.BytesIO(self._data)


class S3Source:
    """S3 object source.

    Prefixes use ranged reads until the object has been downloaded. The
    first full open downloads the object once into a private temporary
    directory; later opens reread that local copy. Call ``close`` (or use
    the source as a context manager) to delete it early.
    """

    def __init__(self, s3_client: Any, location: S3Location) -> None:
        self._client = s3_client
        self._location = location
        self._size: int | None = None
        self._download_dir: tempfile.TemporaryDirectory[str] | None = None
        self._local_path: Path | None = None

    def __enter__(self) -> "S3Source":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def label(self) -> str:
        return f"s3://{self._location.bucket}/{self._location.key}"

    @property
    def size(self) -> int:
        if self._size is None:
            head = self._call(
                "inspect",
                lambda: self._client.head_object(
                    Bucket=self._location.bucket, Key=self._location.key
                ),
            )
            self._size = int(head["ContentLength"])
        return self._size

    @property
    def extension(self) -> str | None:
        return _normalize_extension(Path(self._location.key).suffix)

    def read_prefix(self, length: int) -> bytes:
        if self._local_path is not None:
            with self._local_path.open("rb") as handle:
                return handle.read(length)
        if length <= 0 or self.size == 0:
            return b""
        response = self._call(
            "read",
            lambda: self._client.get_object(
                Bucket=self._location.bucket,
                Key=self._location.key,
                Range=f"bytes=0-{length - 1}",
            ),
        )
        return self._call("read", response["Body"].read)

    def open(self) -> BinaryIO:
        if self._local_path is None:
            self._local_path = self._download()
        return self._local_path.open("rb")

    def close(self) -> None:
        """Delete the downloaded copy, if any."""
        if self._download_dir is not None:
            self._download_dir.cleanup()
        self._download_dir = None
        self._local_path = None

    def _download(self) -> Path:
        download_dir = tempfile.TemporaryDirectory(prefix="docport-s3-")
        local_path = Path(download_dir.name) / "object"
        try:
            with local_path.open("wb") as handle:
                self._call(
                    "download",
                    lambda: self._client.download_fileobj(
                        self._location.bucket, self._location.key, handle
                    ),
                )
        except DecodeError:
            download_dir.cleanup()
            raise
        self._download_dir = download_dir
        _LOGGER.debug("s3_object_downloaded", source=self.label, bytes=local_path.stat().st_size)
        return local_path

    def _call(self, action: str, operation: Callable[[], _T]) -> _T:
        """Run one S3 call, mapping client errors to ``DecodeError``."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return operation()
        except (BotoCoreError, ClientError) as error:
            raise DecodeError(
                f"Failed to {action} {self.label}: {error}. "
                "Check that the object exists and the credentials can read it."
            ) from error


def open_source(source_uri: str, config: DocportConfig) -> RawSource:
    """Open a local path or ``s3://`` URI as a raw source.

    Args:
        source_uri: Local file path or ``s3://bucket/key`` URI.
        config: Runtime configuration for S3 session defaults.

    Returns:
        Raw source handle.

    Raises:
        DecodeError: If the local path is missing or not a file.
        DocportDependencyError: If boto3 is missing for S3 sources.
    """
    if source_uri.startswith("s3://"):
        location = parse_s3_uri(source_uri)
        return S3Source(_create_s3_client(config), location)
    source_path = Path(source_uri).expanduser()
    if not source_path.is_file():
        raise DecodeError(
            f"Failed to open source at {source_path}: path does not exist or is not a file. "
            "Provide an existing file."
        )
    return FileSource(source_path)


def _create_s3_client(config: DocportConfig) -> Any:
    """Create a boto3 S3 client.

    Raises:
        DocportDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise DocportDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to import from s3:// sources."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def _normalize_extension(suffix: str | None) -> str | None:
    if not suffix:
        return None
    return suffix.lower().lstrip(".") or None


def close_source(source: RawSource) -> None:
    """Release temporary files held by a source, if it keeps any."""
    close = getattr(source, "close", None)
    if close is not None:
        close()
