"""Source extract providers.

Adapters turning common in-process sources into full extracts for the
reconciler: plain iterables of mappings, pandas DataFrames and SQL
queries run through SQLAlchemy.
"""

import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine

from snapflow.common.exceptions import ErrorCode, SnapflowError, connection_error
from snapflow.logging import get_logger
from snapflow.snapshot.hasher import is_missing
from snapflow.utils.decorators import traced

logger = get_logger(__name__)


class IterableExtractProvider:
    """Extract backed by rows already in memory.

    Example:
        >>> provider = IterableExtractProvider([{"id": 1, "city": "Seattle"}])
        >>> list(provider.extract())
        [{'id': 1, 'city': 'Seattle'}]
    """

    def __init__(self, rows: Iterable[Mapping[str, Any]]):
        self._rows = list(rows)

    def extract(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._rows]


class DataFrameExtractProvider:
    """Extract backed by a pandas DataFrame.

    Missing values (NaN, NaT, ``pd.NA``) become None so they compare equal
    to nulls read from other sources.
    """

    def __init__(self, frame: pd.DataFrame):
        self.frame = frame

    def extract(self) -> List[Dict[str, Any]]:
        records = self.frame.to_dict(orient="records")
        return [
            {str(column): (None if is_missing(value) else value) for column, value in record.items()}
            for record in records
        ]


class SQLQueryExtractProvider:
    """Extract produced by a SQL query.

    Args:
        engine: SQLAlchemy engine of the source database.
        query: SELECT statement returning the full source relation.
        params: Bound parameters for ``query``.
    """

    def __init__(self, engine: Engine, query: str, params: Optional[Dict[str, Any]] = None):
        self.engine = engine
        self.query = query
        self.params = params or {}

    @traced(
        span_name="snapflow.provider.sql.extract",
        attribute_getter=lambda self: {
            "db.system": self.engine.dialect.name,
            "db.operation": "extract",
            "db.statement": self.query.strip()[:4096],
        },
    )
    def extract(self) -> List[Dict[str, Any]]:
        start_time = time.time()
        try:
            with self.engine.connect() as conn:
                rows = [dict(row) for row in conn.execute(text(self.query), self.params).mappings()]
        except sa_exc.OperationalError as exc:
            raise connection_error(
                "Source extract query failed to connect",
                service=self.engine.dialect.name,
                cause=exc,
            ) from exc
        except sa_exc.SQLAlchemyError as exc:
            raise SnapflowError(
                "Source extract query failed",
                error_code=ErrorCode.DATA_ERROR,
                details={"query": self.query},
                cause=exc,
            ) from exc

        logger.info(
            "Source extract fetched",
            extra={
                "db.platform": self.engine.dialect.name,
                "row_count": str(len(rows)),
                "duration.seconds": f"{time.time() - start_time:.6f}",
            },
        )
        return rows
