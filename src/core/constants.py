"""Core constants used across Docport modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 10_000
DEFAULT_SNIFF_BYTES = 8192
DEFAULT_OPERATION_TIMEOUT_MS = 30_000
DEFAULT_CONFLICT_SAMPLE_SIZE = 20
DEFAULT_DRY_RUN_KEY_LIMIT = 1_000_000
DEFAULT_PROGRESS_QUEUE_SIZE = 256
DEFAULT_PRIMARY_KEY_FIELD = "_id"
DEFAULT_MONGO_URI = "mongodb://localhost:27017"
CSV_SCHEMA_SAMPLE_ROWS = 100
CSV_DELIMITER_SAMPLE_LINES = 10
CSV_CANDIDATE_DELIMITERS = (",", "\t", ";")
ZIP_LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
ZIP_EMPTY_ARCHIVE_SIGNATURE = b"PK\x05\x06"
UTF8_BOM = b"\xef\xbb\xbf"
ZIP_MANIFEST_FILE_NAME = "manifest.json"
DUPLICATE_KEY_ERROR_CODES = frozenset({11000, 11001, 12582})
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
EVENT_IMPORT_PROGRESS = "import:progress"
EVENT_IMPORT_COMPLETE = "import:complete"
EVENT_IMPORT_CANCELLED = "import:cancelled"
EVENT_IMPORT_ERROR = "import:error"
IMPORT_SPEC_VERSION = 1
NDJSON_SCAN_LINES = 20
NDJSON_SCAN_LINE_BYTES = 1024 * 1024
