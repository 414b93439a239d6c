"""Decorators configuring declarative snapshot definitions.

A snapshot definition is a class implementing ``extract()``; the
decorator attaches the unique key, tracked columns and policies that
turn it into a runnable SCD Type-2 snapshot.
"""

from typing import Callable, List, Optional, Type, Union

from snapflow.constants import ALL_COLUMNS, DuplicateKeyPolicy, HashAlgorithm
from snapflow.snapshot.definitions import SnapshotMetadata


def snapshot_metadata(
    target: str,
    unique_key: Union[str, List[str]],
    check_cols: Union[str, List[str]] = ALL_COLUMNS,
    invalidate_hard_deletes: bool = False,
    strict_mode: bool = False,
    duplicate_key_policy: DuplicateKeyPolicy = DuplicateKeyPolicy.REJECT,
    reinsert_invalidated: bool = True,
    exclude_columns: Optional[List[str]] = None,
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256,
    description: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> Callable[[Type], Type]:
    """Decorator for snapshot definition classes.

    Args:
        target: Name of the snapshot table the definition maintains.
        unique_key: Column or columns identifying a source row.
        check_cols: ``"all"`` or the columns compared to detect a change.
            Columns outside this list are carried along but never open a new
            version on their own.
        invalidate_hard_deletes: Close the current version of keys that
            disappear from the source. Off by default, in which case deleted
            keys keep their last version open.
        strict_mode: Abort the run on the first bad row instead of reporting
            it and continuing.
        duplicate_key_policy: What to do when the extract holds the same key
            twice. ``reject`` reports every occurrence and leaves the key
            untouched.
        reinsert_invalidated: Open a fresh version when an invalidated key
            comes back.
        exclude_columns: Audit columns (load timestamps, batch ids) ignored
            when ``check_cols`` is ``"all"``.
        hash_algorithm: Digest used for fingerprints.
        description: What the snapshot captures and why.
        tags: Categorization tags, e.g. ``["domain:crm", "pii:true"]``.

    Returns:
        Decorated class with SnapshotMetadata attached as ``_snapshot_metadata``.

    Example:
        >>> @snapshot_metadata(
        ...     target="customers_snapshot",
        ...     unique_key="customer_id",
        ...     check_cols=["name", "city"],
        ...     invalidate_hard_deletes=True,
        ...     description="Customer master history",
        ... )
        ... class CustomerSnapshot(SnapshotDefinition):
        ...     def extract(self):
        ...         return crm_client.fetch_customers()
    """
    def decorator(cls: Type) -> Type:
        metadata = SnapshotMetadata(
            target=target,
            unique_key=unique_key,
            check_cols=check_cols,
            invalidate_hard_deletes=invalidate_hard_deletes,
            strict_mode=strict_mode,
            duplicate_key_policy=duplicate_key_policy,
            reinsert_invalidated=reinsert_invalidated,
            exclude_columns=exclude_columns or [],
            hash_algorithm=hash_algorithm,
            description=description,
            tags=tags or [],
        )

        cls._snapshot_metadata = metadata
        return cls

    return decorator
