from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence
from typing import TYPE_CHECKING
from typing import Union

from sqlalchemy import create_engine
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import URL

from . import exc

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from .config import Database


log = logging.getLogger(__name__)


class QueryResultSet:
    """Column-oriented output of one query."""

    __slots__ = "row_count", "columns"

    row_count: int
    columns: Dict[str, List[Any]]

    def __init__(self, keys: Sequence[str], rows: Sequence[Sequence[Any]]):
        self.row_count = len(rows)
        self.columns = {
            key: [row[idx] for row in rows] for idx, key in enumerate(keys)
        }

    def column(self, name: str) -> Optional[List[Any]]:
        """Return the values of column ``name``, or None if not present.

        Drivers disagree on the case of unquoted column labels, so a
        case-insensitive match is used if there is no exact one.

        """
        try:
            return self.columns[name]
        except KeyError:
            lowered = name.lower()
            for key, values in self.columns.items():
                if key.lower() == lowered:
                    return values
            return None

    def __repr__(self):
        return "QueryResultSet(row_count=%d, columns=%r)" % (
            self.row_count,
            list(self.columns),
        )


class Executor:
    """Run statements against an :class:`.Engine`, remembering results
    for the length of one collection cycle.

    """

    _cache: Dict[str, Union[QueryResultSet, exc.QueryError]]

    def __init__(self, engine: Engine):
        self.engine = engine
        self._cache = {}

    def query(self, name: str, statement: str) -> QueryResultSet:
        """Return the output of ``statement``.

        The statement is run at most once per ``name`` until
        :meth:`.clear_cached_results` is called.   Raises
        :class:`.QueryError` if the statement failed.

        """
        try:
            cached = self._cache[name]
        except KeyError:
            cached = self._cache[name] = self._run(name, statement)

        if isinstance(cached, exc.QueryError):
            raise cached
        return cached

    def _run(
        self, name: str, statement: str
    ) -> Union[QueryResultSet, exc.QueryError]:
        log.debug("executing query %s: %s", name, statement)
        try:
            keys, rows = self._execute(statement)
        except sa_exc.SQLAlchemyError as err:
            return exc.QueryError(name, err)
        result = QueryResultSet(keys, rows)
        log.debug("query %s -> %r", name, result)
        return result

    def _execute(self, statement):
        with self.engine.connect() as conn:
            result = conn.exec_driver_sql(statement)
            if not result.returns_rows:
                return [], []
            return list(result.keys()), result.fetchall()

    def clear_cached_results(self) -> None:
        self._cache.clear()

    def dispose(self) -> None:
        self._cache.clear()
        self.engine.dispose()


def url_for_database(database: Database) -> URL:
    return URL.create(
        database.driver,
        username=database.username,
        password=database.password,
        host=database.host,
        port=database.port,
        database=database.dbname,
    )


def open_database(database: Database) -> Executor:
    """Create the engine for ``database`` and check that it connects.

    On success the database is marked active and its executor is set;
    otherwise it stays inactive and :class:`.DbiConnectionError` is
    raised.

    """
    database.active = False

    try:
        engine = create_engine(url_for_database(database))
    except (sa_exc.ArgumentError, ImportError) as err:
        raise exc.DbiConnectionError(
            "Cannot create engine for database %s: %s" % (database.name, err)
        ) from err

    try:
        with engine.connect():
            pass
    except sa_exc.SQLAlchemyError as err:
        engine.dispose()
        raise exc.DbiConnectionError(
            "Cannot open database %s: %s" % (database.name, err)
        ) from err

    log.info(
        "opened database %s (%s)",
        database.name,
        engine.url.render_as_string(hide_password=True),
    )
    database.executor = Executor(engine)
    database.active = True
    return database.executor
