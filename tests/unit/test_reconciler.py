"""Tests for check-strategy reconciliation against both store backends."""

from datetime import datetime, timezone

import pytest

from snapflow.common.exceptions import ConfigurationError, ErrorCode, IntegrityError, SnapflowError
from snapflow.snapshot import InMemorySnapshotTableStore, Reconciler, SnapshotConfig

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 2, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 3, tzinfo=timezone.utc)
T3 = datetime(2024, 1, 4, tzinfo=timezone.utc)


def _config(**overrides) -> SnapshotConfig:
    values = {"target": "customers", "unique_key": ["id"], "tracked_columns": ["city"]}
    values.update(overrides)
    return SnapshotConfig(**values)


def _assert_history_complete(store) -> None:
    """Versions of a key never overlap and at most the last one is open."""
    by_key = {}
    for row in store.history():
        by_key.setdefault(row.key, []).append(row)

    for key, rows in by_key.items():
        for previous, following in zip(rows, rows[1:]):
            assert previous.valid_to <= following.valid_from, key
            assert previous.valid_from < previous.valid_to, key
        assert sum(1 for row in rows if row.is_current) <= 1, key
        assert all(row.valid_to is not None for row in rows[:-1]), key


class TestScenarios:
    """The four basic check-strategy transitions."""

    def test_insert_into_empty_snapshot(self, store, config):
        reconciler = Reconciler(config, store)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)

        assert result.inserted == 1
        assert result.applied is True
        assert result.run_id == 1
        current = store.current_versions()
        assert len(current) == 1
        assert current[0].key == (1,)
        assert current[0].valid_from == T0
        assert current[0].valid_to is None
        assert current[0].data == {"id": 1, "city": "Seattle"}

    def test_changed_row_closes_old_version_and_opens_new(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)

        result = reconciler.reconcile([{"id": 1, "city": "Portland"}], run_timestamp=T1)

        assert result.updated == 1
        assert result.inserted == 0
        old, new = store.history((1,))
        assert old.data["city"] == "Seattle"
        assert old.valid_from == T0
        assert old.valid_to == T1
        assert new.data["city"] == "Portland"
        assert new.valid_from == T1
        assert new.is_current
        assert store.current_version((1,)).version_id == new.version_id

    def test_unchanged_row_writes_nothing(self, store, config):
        reconciler = Reconciler(config, store)
        first = reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T1)

        assert result.unchanged == 1
        assert result.writes == 0
        assert result.applied is False
        assert result.run_id == first.run_id
        assert store.current_index().run_id == first.run_id
        assert len(store.history()) == 1

    def test_hard_delete_closes_without_successor(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        reconciler.reconcile(
            [{"id": 1, "city": "Seattle"}, {"id": 2, "city": "Austin"}],
            run_timestamp=T0,
        )

        result = reconciler.reconcile([{"id": 2, "city": "Austin"}], run_timestamp=T1)

        assert result.invalidated == 1
        assert result.unchanged == 1
        assert store.current_version((1,)) is None
        (closed,) = store.history((1,))
        assert closed.valid_to == T1
        assert (1,) in store.current_index().retired_keys

    def test_soft_mode_leaves_missing_keys_current(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile(
            [{"id": 1, "city": "Seattle"}, {"id": 2, "city": "Austin"}],
            run_timestamp=T0,
        )

        result = reconciler.reconcile([{"id": 2, "city": "Austin"}], run_timestamp=T1)

        assert result.invalidated == 0
        assert result.applied is False
        assert store.current_version((1,)).valid_from == T0


class TestProperties:
    """Idempotence, history completeness and single current version."""

    EXTRACTS = [
        (T0, [{"id": 1, "city": "Seattle"}, {"id": 2, "city": "Austin"}, {"id": 3, "city": "Boston"}]),
        (T1, [{"id": 1, "city": "Portland"}, {"id": 2, "city": "Austin"}]),
        (T2, [{"id": 1, "city": "Seattle"}, {"id": 3, "city": "Denver"}]),
        (T3, [{"id": 1, "city": "Seattle"}, {"id": 2, "city": "Dallas"}, {"id": 3, "city": "Denver"}]),
    ]

    def test_rerun_of_same_extract_is_idempotent(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        for run_timestamp, extract in self.EXTRACTS:
            reconciler.reconcile(extract, run_timestamp=run_timestamp)
            before = [row.version_id for row in store.history()]

            rerun = reconciler.reconcile(extract, run_timestamp=run_timestamp)

            assert rerun.writes == 0
            assert rerun.applied is False
            assert [row.version_id for row in store.history()] == before

    def test_history_has_no_gaps_or_overlaps(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        for run_timestamp, extract in self.EXTRACTS:
            reconciler.reconcile(extract, run_timestamp=run_timestamp)
            _assert_history_complete(store)

        assert [row.data["city"] for row in store.history((1,))] == ["Seattle", "Portland", "Seattle"]
        # id 1 was never invalidated, so its versions chain without gaps
        id1 = store.history((1,))
        assert [(row.valid_from, row.valid_to) for row in id1] == [(T0, T1), (T1, T2), (T2, None)]
        # id 3 was invalidated at T1 and reinserted at T2
        id3 = store.history((3,))
        assert [(row.valid_from, row.valid_to) for row in id3] == [(T0, T1), (T2, None)]

    def test_each_present_key_has_exactly_one_current_version(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        for run_timestamp, extract in self.EXTRACTS:
            reconciler.reconcile(extract, run_timestamp=run_timestamp)
            current = store.current_index().current
            assert set(current) == {(row["id"],) for row in extract}

    def test_untracked_column_change_is_not_a_new_version(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle", "name": "Ada"}], run_timestamp=T0)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle", "name": "Grace"}], run_timestamp=T1)

        assert result.unchanged == 1
        assert store.current_version((1,)).data["name"] == "Ada"

    def test_tracking_all_columns_detects_any_change(self, store):
        reconciler = Reconciler(_config(tracked_columns="all", exclude_columns=["loaded_at"]), store)
        reconciler.reconcile([{"id": 1, "city": "Seattle", "name": "Ada", "loaded_at": "a"}], run_timestamp=T0)

        touched = reconciler.reconcile(
            [{"id": 1, "city": "Seattle", "name": "Ada", "loaded_at": "b"}], run_timestamp=T1
        )
        renamed = reconciler.reconcile(
            [{"id": 1, "city": "Seattle", "name": "Grace", "loaded_at": "b"}], run_timestamp=T2
        )

        assert touched.unchanged == 1
        assert renamed.updated == 1


class TestEdgeCases:
    """Row errors, policies and timestamps."""

    def test_null_key_is_reported_and_batch_continues(self, store, config):
        reconciler = Reconciler(config, store)

        result = reconciler.reconcile(
            [{"id": None, "city": "Seattle"}, {"id": 2, "city": "Austin"}],
            run_timestamp=T0,
        )

        assert result.inserted == 1
        assert len(result.errors) == 1
        assert result.errors[0].error_code == ErrorCode.MISSING_KEY.value
        assert result.errors[0].row_index == 0

    def test_strict_mode_aborts_before_any_write(self, store):
        reconciler = Reconciler(_config(strict_mode=True), store)

        with pytest.raises(ConfigurationError) as exc_info:
            reconciler.reconcile(
                [{"id": 2, "city": "Austin"}, {"id": None, "city": "Seattle"}],
                run_timestamp=T0,
            )

        assert exc_info.value.error_code == ErrorCode.MISSING_KEY
        assert store.history() == []
        assert store.current_index().run_id == 0

    def test_missing_tracked_column_fails_the_run(self, store, config):
        reconciler = Reconciler(config, store)

        with pytest.raises(ConfigurationError) as exc_info:
            reconciler.reconcile([{"id": 1, "name": "Ada"}], run_timestamp=T0)

        assert exc_info.value.error_code == ErrorCode.MISSING_COLUMN
        assert store.history() == []

    def test_duplicate_keys_are_rejected_by_default(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)

        result = reconciler.reconcile(
            [{"id": 1, "city": "Portland"}, {"id": 1, "city": "Denver"}],
            run_timestamp=T1,
        )

        assert [error.error_code for error in result.errors] == [ErrorCode.DUPLICATE_KEY.value] * 2
        assert [error.row_index for error in result.errors] == [0, 1]
        # A rejected key is present in the extract, so it is neither updated nor invalidated
        assert result.writes == 0
        assert store.current_version((1,)).data["city"] == "Seattle"

    @pytest.mark.parametrize(
        "policy,expected_city",
        [("keep_first", "Portland"), ("keep_last", "Denver")],
    )
    def test_duplicate_key_policies(self, store, policy, expected_city):
        reconciler = Reconciler(_config(duplicate_key_policy=policy), store)

        result = reconciler.reconcile(
            [{"id": 1, "city": "Portland"}, {"id": 1, "city": "Denver"}],
            run_timestamp=T0,
        )

        assert result.inserted == 1
        assert result.errors == []
        assert store.current_version((1,)).data["city"] == expected_city

    def test_invalidated_key_is_reinserted(self, store, hard_delete_config):
        reconciler = Reconciler(hard_delete_config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)
        reconciler.reconcile([], run_timestamp=T1)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T2)

        assert result.reinserted == 1
        assert result.inserted == 0
        first, second = store.history((1,))
        assert first.valid_to == T1
        assert second.valid_from == T2
        assert second.is_current
        # Same key and values, different validity: a distinct version
        assert first.version_id != second.version_id

    def test_reinsertion_can_be_disabled(self, store):
        reconciler = Reconciler(_config(invalidate_hard_deletes=True, reinsert_invalidated=False), store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)
        reconciler.reconcile([], run_timestamp=T1)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T2)

        assert result.reinserted == 0
        assert result.errors[0].error_code == ErrorCode.KEY_INVALIDATED.value
        assert store.current_version((1,)) is None

    def test_run_timestamp_before_last_run_is_rejected(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T1)

        with pytest.raises(ConfigurationError) as exc_info:
            reconciler.reconcile([{"id": 1, "city": "Portland"}], run_timestamp=T0)

        assert exc_info.value.error_code == ErrorCode.STALE_RUN_TIMESTAMP
        assert len(store.history()) == 1

    def test_change_at_the_same_timestamp_is_a_row_error(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T1)

        result = reconciler.reconcile([{"id": 1, "city": "Portland"}], run_timestamp=T1)

        assert result.updated == 0
        assert result.errors[0].error_code == ErrorCode.STALE_RUN_TIMESTAMP.value
        assert store.current_version((1,)).data["city"] == "Seattle"

    def test_default_run_timestamp_comes_from_clock(self, store, config):
        reconciler = Reconciler(config, store, clock=lambda: T2)

        result = reconciler.reconcile([{"id": 1, "city": "Seattle"}])

        assert result.run_timestamp == T2
        assert store.current_version((1,)).valid_from == T2

    def test_composite_key(self, store):
        reconciler = Reconciler(_config(unique_key=["tenant", "id"]), store)

        reconciler.reconcile(
            [{"tenant": "a", "id": 1, "city": "Seattle"}, {"tenant": "b", "id": 1, "city": "Austin"}],
            run_timestamp=T0,
        )
        result = reconciler.reconcile(
            [{"tenant": "a", "id": 1, "city": "Seattle"}, {"tenant": "b", "id": 1, "city": "Dallas"}],
            run_timestamp=T1,
        )

        assert result.updated == 1
        assert result.unchanged == 1
        assert store.current_version(("b", 1)).data["city"] == "Dallas"


class TestPlanAndApply:
    """The pure planning phase and the atomic apply phase."""

    def test_plan_does_not_write(self, store, config):
        reconciler = Reconciler(config, store)

        plan = reconciler.plan([{"id": 1, "city": "Seattle"}], run_timestamp=T0)

        assert plan.inserted == 1
        assert plan.has_writes
        assert store.history() == []
        assert store.current_index().run_id == 0

    def test_plan_against_supplied_state(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)
        empty_state = InMemorySnapshotTableStore("customers").current_index()

        plan = reconciler.plan([{"id": 1, "city": "Seattle"}], run_timestamp=T1, snapshot_state=empty_state)

        assert plan.inserted == 1
        assert plan.expected_run_id == 0

    def test_apply_detects_a_concurrent_run(self, store, config):
        reconciler = Reconciler(config, store)
        stale_plan = reconciler.plan([{"id": 1, "city": "Seattle"}], run_timestamp=T0)
        reconciler.reconcile([{"id": 2, "city": "Austin"}], run_timestamp=T0)

        with pytest.raises(IntegrityError) as exc_info:
            reconciler.apply(stale_plan)

        assert exc_info.value.error_code == ErrorCode.CONCURRENT_RUN
        assert [row.key for row in store.history()] == [(2,)]

    def test_failed_apply_leaves_no_partial_writes(self, store, config):
        reconciler = Reconciler(config, store)
        reconciler.reconcile([{"id": 1, "city": "Seattle"}], run_timestamp=T0)
        plan = reconciler.plan(
            [{"id": 1, "city": "Portland"}, {"id": 2, "city": "Austin"}],
            run_timestamp=T1,
        )
        # Opening a second version of key 2 in the same plan breaks the append
        plan.inserts.append(plan.inserts[-1])

        with pytest.raises(SnapflowError):
            reconciler.apply(plan)

        (row,) = store.history()
        assert row.data["city"] == "Seattle"
        assert row.is_current
        assert store.current_index().run_id == 1


class TestParallelFingerprinting:
    """Large extracts are fingerprinted on a thread pool."""

    def test_parallel_and_serial_plans_match(self, config):
        rows = [{"id": i, "city": f"city-{i % 7}"} for i in range(200)]
        serial = Reconciler(config, InMemorySnapshotTableStore("customers"))
        parallel = Reconciler(
            config,
            InMemorySnapshotTableStore("customers"),
            max_workers=4,
            parallel_threshold=50,
        )

        serial_plan = serial.plan(rows, run_timestamp=T0)
        parallel_plan = parallel.plan(rows, run_timestamp=T0)

        assert parallel_plan.inserted == 200
        assert [row.version_id for row in parallel_plan.inserts] == [
            row.version_id for row in serial_plan.inserts
        ]

    def test_parallel_row_errors_keep_their_index(self, config):
        rows = [{"id": i, "city": "x"} for i in range(100)]
        rows[73] = {"id": None, "city": "x"}
        reconciler = Reconciler(
            config,
            InMemorySnapshotTableStore("customers"),
            max_workers=3,
            parallel_threshold=10,
        )

        plan = reconciler.plan(rows, run_timestamp=T0)

        assert plan.inserted == 99
        assert [error.row_index for error in plan.errors] == [73]
