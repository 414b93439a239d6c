"""Tests for source extract providers."""

import numpy as np
import pandas as pd
import pytest
from sqlalchemy import create_engine, text

from snapflow.common.exceptions import ConnectivityError
from snapflow.protocols import SourceExtractProvider
from snapflow.snapshot import (
    DataFrameExtractProvider,
    IterableExtractProvider,
    SQLQueryExtractProvider,
)


class TestIterableExtractProvider:

    def test_extract_returns_copies(self):
        rows = [{"id": 1, "city": "Seattle"}]
        provider = IterableExtractProvider(rows)

        extracted = provider.extract()
        extracted[0]["city"] = "Portland"

        assert provider.extract() == [{"id": 1, "city": "Seattle"}]

    def test_accepts_generators(self):
        provider = IterableExtractProvider({"id": i} for i in range(3))

        assert len(provider.extract()) == 3
        assert len(provider.extract()) == 3

    def test_satisfies_protocol(self):
        assert isinstance(IterableExtractProvider([]), SourceExtractProvider)


class TestDataFrameExtractProvider:

    def test_missing_values_become_none(self):
        frame = pd.DataFrame(
            {
                "id": [1, 2],
                "city": ["Seattle", None],
                "score": [1.5, np.nan],
                "seen": [pd.Timestamp("2024-01-01"), pd.NaT],
            }
        )

        rows = DataFrameExtractProvider(frame).extract()

        assert rows[0]["city"] == "Seattle"
        assert rows[1]["city"] is None
        assert rows[1]["score"] is None
        assert rows[1]["seen"] is None
        assert rows[0]["seen"] == pd.Timestamp("2024-01-01")

    def test_satisfies_protocol(self):
        assert isinstance(DataFrameExtractProvider(pd.DataFrame()), SourceExtractProvider)


class TestSQLQueryExtractProvider:

    @pytest.fixture
    def source(self, engine):
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, city TEXT, active INTEGER)"))
            conn.execute(
                text("INSERT INTO customers (id, city, active) VALUES (1, 'Seattle', 1), (2, 'Austin', 0)")
            )
        return engine

    def test_extract_rows_as_mappings(self, source):
        provider = SQLQueryExtractProvider(source, "SELECT id, city FROM customers ORDER BY id")

        assert provider.extract() == [{"id": 1, "city": "Seattle"}, {"id": 2, "city": "Austin"}]

    def test_bound_parameters(self, source):
        provider = SQLQueryExtractProvider(
            source,
            "SELECT id, city FROM customers WHERE active = :active",
            params={"active": 1},
        )

        assert provider.extract() == [{"id": 1, "city": "Seattle"}]

    def test_operational_failure_is_a_connectivity_error(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'source.db'}")
        provider = SQLQueryExtractProvider(engine, "SELECT 1")

        with pytest.raises(ConnectivityError):
            provider.extract()
