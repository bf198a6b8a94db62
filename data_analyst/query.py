# query.py

import asyncio
import logging

import duckdb

from .results import TabularResult

logger = logging.getLogger(__name__)


class QueryEngine:
    """Runs SQL on a throwaway in-memory DuckDB (httpfs/parquet readers included)."""

    def __init__(self, database: str = ":memory:"):
        self.database = database

    def _run(self, sql: str) -> TabularResult:
        con = duckdb.connect(self.database)
        try:
            cur = con.execute(sql)
            columns = [d[0] for d in (cur.description or [])]
            rows = cur.fetchall() if columns else []
        finally:
            con.close()
        return TabularResult.of(columns, rows)

    async def query(self, sql: str) -> TabularResult:
        logger.info(f"Executing query: {sql[:200]}")
        result = await asyncio.to_thread(self._run, sql)
        logger.info(f"Query returned {len(result.rows)} rows")
        return result
