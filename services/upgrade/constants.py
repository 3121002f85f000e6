"""Constants shared across the upgrade service modules."""

from __future__ import annotations

CONF_FOLDER = "conf"

WINDOWS_EXECUTABLE_EXTENSIONS = (".exe", ".bat", ".cmd")
POSIX_EXECUTABLE_EXTENSIONS = ("", ".sh")

MAX_ARCHIVE_TOTAL_BYTES = 1024 * 1024 * 1024  # 1 GiB
MAX_ARCHIVE_FILE_SIZE = 512 * 1024 * 1024  # 512 MiB per file
MAX_ARCHIVE_ENTRIES = 20000
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes
