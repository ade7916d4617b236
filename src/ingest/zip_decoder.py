"""Zip archive enumeration for multi-collection imports.

Each archive entry maps to its destination through its path, either
``<database>/<collection>.<extension>`` or the export layout
``<database>/<collection>/documents.<extension>``. Export metadata files
(``manifest.json`` and per-collection ``indexes.json``) are not documents:
the manifest feeds estimates and previews, index files are parsed into
definitions restored after the collection loads.
"""

from __future__ import annotations

import json
import zipfile
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable, Iterator

from core.constants import ZIP_MANIFEST_FILE_NAME
from core.errors import DecodeError
from core.logging_config import get_logger
from core.types import Destination
from ingest.decode_types import IndexDefinition, IndexRestore
from ingest.raw_source import BytesSource, RawSource

_LOGGER = get_logger(__name__)
_EXPORT_DOCUMENTS_STEM = "documents"
_EXPORT_INDEXES_FILE = "indexes.json"
_EXPORT_METADATA_FILES = frozenset({_EXPORT_INDEXES_FILE})
_ID_INDEX_NAME = "_id_"

DestinationFilter = Callable[[Destination], bool]


@dataclass(frozen=True)
class ZipEntry:
    """One archive member ready for sniffing and decoding.

    Attributes:
        path: Member path inside the archive.
        source: In-memory source over the member bytes.
        destination: Destination parsed from the path, or None.
        path_error: Why the path violates the layout convention, if it does.
    """

    path: str
    source: BytesSource
    destination: Destination | None
    path_error: str | None = None

    @property
    def is_export_layout(self) -> bool:
        return len(PurePosixPath(self.path).parts) == 3


@dataclass(frozen=True)
class ArchiveCollection:
    """One collection listed by an archive preview."""

    destination: Destination
    document_count: int | None = None
    index_count: int | None = None


@dataclass(frozen=True)
class ArchivePreview:
    """Archive contents, taken from the export manifest when there is one.

    Attributes:
        label: Source label of the archive.
        exported_at: Export timestamp recorded in the manifest.
        collections: Collections in manifest or archive order.
    """

    label: str
    exported_at: str | None
    collections: tuple[ArchiveCollection, ...]

    def databases(self) -> dict[str, list[ArchiveCollection]]:
        """Group collections by database, keeping their order."""
        grouped: dict[str, list[ArchiveCollection]] = {}
        for collection in self.collections:
            grouped.setdefault(collection.destination.database, []).append(collection)
        return grouped


class ZipArchive:
    """Opened archive with its member list validated up front."""

    def __init__(self, source: RawSource) -> None:
        self._label = source.label
        handle = source.open()
        try:
            self._zip = zipfile.ZipFile(handle)
            self._members = [info for info in self._zip.infolist() if not info.is_dir()]
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as error:
            handle.close()
            raise DecodeError(
                f"Failed to read zip archive {source.label}: {error}. "
                "Check that the archive is complete and not corrupted."
            ) from error
        self._handle = handle

    def close(self) -> None:
        self._zip.close()
        self._handle.close()

    def total_estimate(self, selects: DestinationFilter | None = None) -> int | None:
        """Sum document counts from an export manifest, when one is present."""
        collections = self.manifest_collections()
        if collections is None:
            return None
        return sum(
            collection.document_count or 0
            for collection in collections
            if selects is None or selects(collection.destination)
        )

    def manifest_collections(self) -> list[ArchiveCollection] | None:
        """Read collection entries from the export manifest, if readable."""
        manifest = self._read_manifest()
        if manifest is None:
            return None
        try:
            return [
                ArchiveCollection(
                    destination=Destination(str(database["name"]), str(collection["name"])),
                    document_count=int(collection.get("docCount", 0)),
                    index_count=_optional_int(collection.get("indexCount")),
                )
                for database in manifest.get("databases", [])
                for collection in database.get("collections", [])
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as error:
            _LOGGER.warning("zip_manifest_unreadable", source=self._label, error=str(error))
            return None

    def exported_at(self) -> str | None:
        manifest = self._read_manifest()
        if manifest is None or not isinstance(manifest, dict):
            return None
        exported_at = manifest.get("exportedAt")
        return str(exported_at) if exported_at else None

    def iter_entries(self) -> Iterator[ZipEntry]:
        """Yield document members in archive order, closing the archive at the end."""
        try:
            for info in self._members:
                if _is_metadata_member(info.filename):
                    _LOGGER.debug("zip_entry_skipped", source=self._label, entry=info.filename)
                    continue
                yield self._read_entry(info)
        finally:
            self.close()

    def document_destinations(self) -> list[Destination]:
        """Destinations of document members whose paths follow the layout."""
        destinations: list[Destination] = []
        for info in self._members:
            if _is_metadata_member(info.filename):
                continue
            destination, _ = destination_for_entry(info.filename)
            if destination is not None and destination not in destinations:
                destinations.append(destination)
        return destinations

    def index_restore(self, destination: Destination) -> IndexRestore | None:
        """Parse ``<database>/<collection>/indexes.json`` for one collection.

        Returns:
            Index restore, or None when the archive has no index file for it.
        """
        path = f"{destination.database}/{destination.collection}/{_EXPORT_INDEXES_FILE}"
        if path not in self._zip.namelist():
            return None
        label = f"{self._label}!{path}"
        try:
            payload = json.loads(self._zip.read(path))
        except (ValueError, zipfile.BadZipFile, OSError) as error:
            reason = f"Unreadable index file {label}: {error}"
            return IndexRestore(destination, (), label, (reason,))
        if not isinstance(payload, list):
            return IndexRestore(
                destination, (), label, (f"Index file {label} must hold a JSON array.",)
            )
        definitions: list[IndexDefinition] = []
        errors: list[str] = []
        for position, raw_index in enumerate(payload):
            definition, error = _parse_index(raw_index)
            if error is not None:
                errors.append(f"{label}[{position}]: {error}")
            elif definition is not None:
                definitions.append(definition)
        return IndexRestore(destination, tuple(definitions), label, tuple(errors))

    def _read_manifest(self) -> Any:
        if ZIP_MANIFEST_FILE_NAME not in self._zip.namelist():
            return None
        try:
            return json.loads(self._zip.read(ZIP_MANIFEST_FILE_NAME))
        except (ValueError, zipfile.BadZipFile) as error:
            _LOGGER.warning("zip_manifest_unreadable", source=self._label, error=str(error))
            return None

    def _read_entry(self, info: zipfile.ZipInfo) -> ZipEntry:
        label = f"{self._label}!{info.filename}"
        extension = PurePosixPath(info.filename).suffix or None
        try:
            data = self._zip.read(info)
        except (zipfile.BadZipFile, OSError, RuntimeError) as error:
            raise DecodeError(f"Failed to read zip entry {label}: {error}.") from error
        destination, path_error = destination_for_entry(info.filename)
        return ZipEntry(
            path=info.filename,
            source=BytesSource(data, label=label, extension=extension),
            destination=destination,
            path_error=path_error,
        )


def preview_archive(source: RawSource) -> ArchivePreview:
    """List the databases and collections an archive would import.

    Args:
        source: Zip archive source.

    Returns:
        Preview built from the export manifest, or from member paths when the
        archive has no readable manifest.

    Raises:
        DecodeError: If the source is not a readable zip archive.
    """
    archive = ZipArchive(source)
    try:
        collections = archive.manifest_collections()
        if collections is None:
            collections = [
                ArchiveCollection(destination) for destination in archive.document_destinations()
            ]
        return ArchivePreview(source.label, archive.exported_at(), tuple(collections))
    finally:
        archive.close()


def destination_for_entry(path: str) -> tuple[Destination | None, str | None]:
    """Map an entry path to its destination.

    Args:
        path: Archive member path.

    Returns:
        ``(destination, None)`` when the path follows the convention,
        otherwise ``(None, reason)``.
    """
    parts = PurePosixPath(path).parts
    if len(parts) == 2:
        database, file_name = parts
        collection = PurePosixPath(file_name).stem
    elif len(parts) == 3 and PurePosixPath(parts[2]).stem == _EXPORT_DOCUMENTS_STEM:
        database, collection = parts[0], parts[1]
    else:
        return None, (
            f"Entry path '{path}' does not follow <database>/<collection>.<extension>."
        )
    if not database.strip() or not collection.strip() or collection.startswith("."):
        return None, f"Entry path '{path}' has an empty database or collection name."
    return Destination(database=database, collection=collection), None


def _parse_index(raw_index: object) -> tuple[IndexDefinition | None, str | None]:
    """Parse one exported index; the default ``_id`` index is left out."""
    if not isinstance(raw_index, dict) or not isinstance(raw_index.get("key"), dict):
        return None, "index definition needs a 'key' object"
    keys = tuple(
        (str(field), _index_direction(direction)) for field, direction in raw_index["key"].items()
    )
    if not keys:
        return None, "index definition has no key fields"
    name = raw_index.get("name")
    if name == _ID_INDEX_NAME or keys == (("_id", 1),):
        return None, None
    return (
        IndexDefinition(
            keys=keys,
            name=str(name) if name else None,
            unique=raw_index.get("unique") is True,
            sparse=raw_index.get("sparse") is True,
        ),
        None,
    )


def _index_direction(direction: object) -> object:
    if isinstance(direction, float) and direction.is_integer():
        return int(direction)
    return direction


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)  # type: ignore[call-overload]


def _is_metadata_member(path: str) -> bool:
    if path == ZIP_MANIFEST_FILE_NAME:
        return True
    parts = PurePosixPath(path).parts
    return len(parts) == 3 and parts[2] in _EXPORT_METADATA_FILES
