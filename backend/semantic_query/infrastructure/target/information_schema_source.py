"""ColumnSource over ``INFORMATION_SCHEMA.COLUMNS`` of a target database.

The connection string is a SQLAlchemy URL with an async driver
(``mssql+aioodbc://...`` for SQL Server, ``postgresql+asyncpg://...``).
A plain ``postgresql://`` URL is upgraded to asyncpg.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from semantic_query.application.interfaces import ColumnSource
from semantic_query.domain.entities import ColumnRecord
from semantic_query.infrastructure.database.session import get_async_url

logger = logging.getLogger(__name__)

_COLUMNS_QUERY = text(
    """
    SELECT
      TABLE_SCHEMA,
      TABLE_NAME,
      COLUMN_NAME,
      DATA_TYPE,
      ORDINAL_POSITION,
      IS_NULLABLE,
      CHARACTER_MAXIMUM_LENGTH,
      NUMERIC_PRECISION,
      NUMERIC_SCALE
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = :schema
    ORDER BY TABLE_NAME, ORDINAL_POSITION
    """
)


def _to_int(value) -> int | None:
    return int(value) if value is not None else None


class InformationSchemaColumnSource(ColumnSource):
    """Reads one schema's column catalog through an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def list_columns(self, schema: str) -> list[ColumnRecord]:
        async with self._engine.connect() as conn:
            result = await conn.execute(_COLUMNS_QUERY, {"schema": schema})
            rows = result.all()

        logger.info("Read %d columns from schema %s", len(rows), schema)
        return [
            ColumnRecord(
                table_schema=row[0],
                table_name=row[1],
                column_name=row[2],
                data_type=row[3],
                ordinal_position=_to_int(row[4]),
                is_nullable=(str(row[5]).upper() == "YES") if row[5] is not None else None,
                character_max_length=_to_int(row[6]),
                numeric_precision=_to_int(row[7]),
                numeric_scale=_to_int(row[8]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        await self._engine.dispose()


def information_schema_source_factory(connection_string: str) -> InformationSchemaColumnSource:
    """ColumnSourceFactory — one short-lived engine per discovery run."""
    engine = create_async_engine(get_async_url(connection_string), pool_pre_ping=True)
    return InformationSchemaColumnSource(engine)
