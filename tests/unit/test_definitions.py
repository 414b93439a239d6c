"""Tests for declarative snapshot definitions."""

import pytest

from snapflow.common.exceptions import ConfigurationError, ErrorCode
from snapflow.constants import ALL_COLUMNS, DuplicateKeyPolicy
from snapflow.snapshot import SnapshotDefinition, SnapshotMetadata, snapshot_metadata


@snapshot_metadata(
    target="customers_snapshot",
    unique_key="customer_id",
    check_cols=["name", "city"],
    invalidate_hard_deletes=True,
    duplicate_key_policy=DuplicateKeyPolicy.KEEP_LAST,
    description="Customer master history",
    tags=["domain:crm"],
)
class CustomerSnapshot(SnapshotDefinition):
    def extract(self):
        return [{"customer_id": 1, "name": "Ada", "city": "Seattle"}]


class TestSnapshotMetadataDecorator:
    """@snapshot_metadata attaches configuration to the class."""

    def test_metadata_is_attached(self):
        metadata = CustomerSnapshot._snapshot_metadata

        assert isinstance(metadata, SnapshotMetadata)
        assert metadata.unique_key == ["customer_id"]
        assert metadata.description == "Customer master history"
        assert metadata.tags == ["domain:crm"]

    def test_get_config(self):
        config = CustomerSnapshot.get_config()

        assert config.target == "customers_snapshot"
        assert config.unique_key == ["customer_id"]
        assert config.tracked_columns == ["name", "city"]
        assert config.invalidate_hard_deletes is True
        assert config.duplicate_key_policy == DuplicateKeyPolicy.KEEP_LAST.value
        assert config.reinsert_invalidated is True

    def test_defaults(self):
        @snapshot_metadata(target="orders", unique_key=["order_id", "line"])
        class OrderSnapshot(SnapshotDefinition):
            def extract(self):
                return []

        config = OrderSnapshot.get_config()

        assert config.tracked_columns == ALL_COLUMNS
        assert config.unique_key == ["order_id", "line"]
        assert config.invalidate_hard_deletes is False
        assert config.strict_mode is False
        assert OrderSnapshot._snapshot_metadata.tags == []

    def test_undecorated_definition_raises(self):
        class Undecorated(SnapshotDefinition):
            def extract(self):
                return []

        with pytest.raises(ConfigurationError) as exc_info:
            Undecorated.get_config()

        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING

    def test_invalid_columns_are_rejected(self):
        @snapshot_metadata(target="orders", unique_key=["valid_from"])
        class BadSnapshot(SnapshotDefinition):
            def extract(self):
                return []

        with pytest.raises(ValueError, match="reserved system column"):
            BadSnapshot.get_config()

    def test_definition_is_an_extract_provider(self):
        assert CustomerSnapshot().extract()[0]["customer_id"] == 1
