"""Database Query step implementation.

Runs one SQL statement through SQLAlchemy's asyncio engine and returns
the resulting rows as plain dicts.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from app.config import get_settings
from core.utils import parse_json_object
from tasks.base_task import BaseTask, TaskResult
from workflow.models import StepContext

logger = structlog.get_logger(__name__)


class DatabaseQueryTask(BaseTask):
    """Execute a SQL query.

    Config:
        dbQuery: SQL text (required; ``query`` accepted as an alias)
        dbParams: Bind parameters, mapping or JSON object text
        databaseUrl: Async SQLAlchemy URL (default: DATABASE_URL)
    """

    action_type = "Database Query"
    display_name = "Database Query"
    description = "Run a SQL query and return the rows"

    async def execute(self, config: Dict[str, Any], context: Optional[StepContext] = None) -> TaskResult:
        query = config.get("dbQuery") or config.get("query")
        if not query or not str(query).strip():
            return TaskResult(success=False, error="Missing required config: dbQuery")

        try:
            params = parse_json_object(config.get("dbParams"), "dbParams")
        except ValueError as e:
            return TaskResult(success=False, error=str(e))

        database_url = config.get("databaseUrl") or get_settings().DATABASE_URL
        engine = create_async_engine(database_url)
        try:
            async with engine.begin() as conn:
                result = await conn.execute(text(str(query)), params)
                if result.returns_rows:
                    rows = [dict(row._mapping) for row in result.fetchall()]
                    output = {"rows": rows, "count": len(rows)}
                else:
                    output = {"rows": [], "count": result.rowcount}
        except SQLAlchemyError as e:
            logger.error("database_query_failed", error=str(e.__cause__ or e))
            return TaskResult(success=False, error=f"Database query failed: {e.__cause__ or e}")
        finally:
            await engine.dispose()

        return TaskResult(success=True, output=output)


async def database_query_step(step_input: Dict[str, Any]) -> Dict[str, Any]:
    return await DatabaseQueryTask().run(step_input)
