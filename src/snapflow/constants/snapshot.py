"""Snapshot engine constants and enumerations.

This module contains the enum types and column names used throughout the
snapshot package for change classification, duplicate resolution and
fingerprinting.
"""

from enum import Enum


ALL_COLUMNS = "all"
"""Shorthand for tracking every non-key column of the source row."""


class ChangeType(str, Enum):
    """Classification of one key in a reconciliation run.

    INSERT: key has no history in the snapshot
    UPDATE: current version's fingerprint differs; close it and open a new one
    UNCHANGED: fingerprint matches, nothing is written
    INVALIDATE: key vanished from the extract and hard deletes are tracked
    REINSERT: key was invalidated earlier and reappeared in the extract
    """

    INSERT = "insert"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    INVALIDATE = "invalidate"
    REINSERT = "reinsert"


class DuplicateKeyPolicy(str, Enum):
    """How to resolve two extract rows sharing one unique key.

    REJECT: report every occurrence as a row error and leave the key untouched
    KEEP_FIRST: keep the first occurrence in extract order
    KEEP_LAST: keep the last occurrence in extract order
    """

    REJECT = "reject"
    KEEP_FIRST = "keep_first"
    KEEP_LAST = "keep_last"


class HashAlgorithm(str, Enum):
    """Digest algorithms accepted for row fingerprints."""

    SHA256 = "sha256"
    SHA1 = "sha1"
    MD5 = "md5"


class StoreBackend(str, Enum):
    """Snapshot table store backends selectable from settings."""

    MEMORY = "memory"
    SQL = "sql"


class SystemColumn(str, Enum):
    """System columns added to every snapshot row."""

    VALID_FROM = "valid_from"
    VALID_TO = "valid_to"
    VERSION_ID = "version_id"
    IS_CURRENT = "is_current"
    FINGERPRINT = "fingerprint"
    RUN_ID = "run_id"
