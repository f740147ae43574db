import logging
import re
from typing import Any, Sequence

from sqlalchemy import bindparam, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from errors import StorageError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")

_MONTH_EXPRESSIONS = {
    "sqlite": "strftime('%Y-%m', {column})",
    "postgresql": "to_char({column}, 'YYYY-MM')",
}


def create_db_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    kwargs: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class SQLExecutor:
    """Runs positional ``$n`` SQL templates through a SQLAlchemy session.

    Each ``$n`` is rewritten to a named bind parameter ``:pn`` and the n-th
    value of ``params`` is bound to it, so values never reach the SQL text.
    Bind types are inferred from the Python values, which lets dates,
    datetimes and decimals round-trip on every supported dialect.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def month_expression(self, column: str) -> str:
        try:
            template = _MONTH_EXPRESSIONS[self.dialect]
        except KeyError:
            raise StorageError() from None
        return template.format(column=column)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        used = {int(n) for n in _PLACEHOLDER.findall(sql)}
        if used != set(range(1, len(params) + 1)):
            raise ValueError(
                f"Placeholder mismatch: {len(params)} params for positions {sorted(used)}"
            )
        stmt = text(_PLACEHOLDER.sub(lambda m: f":p{m.group(1)}", sql))
        if params:
            stmt = stmt.bindparams(
                *(bindparam(f"p{idx}", value) for idx, value in enumerate(params, start=1))
            )
        try:
            result = self.session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            logger.error(f"storage_error: {exc.__class__.__name__}", exc_info=True)
            raise StorageError() from exc
