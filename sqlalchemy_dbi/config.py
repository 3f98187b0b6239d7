"""Configuration model for the queries and the database they run against.

The SQL settings file is a JSON document with a ``database`` block
describing one connection and a list of ``queries``.  Each query has
a statement and a list of results; each result names the column its
value comes from and declares the namespace segments the metric will
be published under.

"""
from __future__ import annotations

import json
import os
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import TYPE_CHECKING

from . import exc

if TYPE_CHECKING:
    from .executor import Executor
    from .namespace import Namespace


DEFAULT_PREFIX = ("sqlalchemy", "dbi")

DATABASE_OPTIONS = (
    "driver",
    "host",
    "port",
    "username",
    "password",
    "dbname",
    "name",
    "dbqueries",
)


class StaticSegment:
    """A fixed element of the namespace."""

    __slots__ = ("string",)

    kind = "static"

    def __init__(self, string: str):
        self.string = string

    def __eq__(self, other):
        return isinstance(other, StaticSegment) and self.string == other.string

    def __repr__(self):
        return "StaticSegment(%r)" % self.string


class DynamicSegment:
    """An element whose value is taken from a column of each row.

    ``name`` and ``description`` describe the element in the metric
    catalogue; they are not part of the value.

    """

    __slots__ = ("name", "description", "instance_from")

    kind = "dynamic"

    def __init__(
        self, name: str, description: str = "", instance_from: str = ""
    ):
        self.name = name
        self.description = description
        self.instance_from = instance_from

    def __eq__(self, other):
        return type(self) is type(other) and (
            self.name,
            self.description,
            self.instance_from,
        ) == (other.name, other.description, other.instance_from)

    def __repr__(self):
        return "%s(%r, %r, %r)" % (
            type(self).__name__,
            self.name,
            self.description,
            self.instance_from,
        )


class ExpandSegment(DynamicSegment):
    """A dynamic element whose row value is the whole element.

    The name and description are only used in the catalogue and are
    cleared when the element is bound.

    """

    __slots__ = ()

    kind = "expand"


class ConnectionSegment:
    """An element bound to the display name of the database."""

    __slots__ = ("name", "description")

    kind = "connection"

    def __init__(
        self,
        name: str = "connection",
        description: str = "name of the database connection",
    ):
        self.name = name
        self.description = description

    def __eq__(self, other):
        return isinstance(other, ConnectionSegment) and (
            self.name,
            self.description,
        ) == (other.name, other.description)

    def __repr__(self):
        return "ConnectionSegment(%r, %r)" % (self.name, self.description)


class Result:
    segments: List[Any]
    value_from: str
    instance_prefix: str
    template: Optional[Namespace]

    def __init__(
        self,
        name: str,
        segments: Sequence[Any],
        value_from: str,
        instance_prefix: str = "",
    ):
        if not segments:
            raise exc.ConfigurationError(
                "Result `%s` does not declare a namespace" % name
            )
        self.name = name
        self.segments = list(segments)
        self.value_from = value_from
        self.instance_prefix = instance_prefix

        # set by namespace.compile_result()
        self.template = None

    def __repr__(self):
        return "Result(%r, %r, value_from=%r)" % (
            self.name,
            self.segments,
            self.value_from,
        )


class Query:
    results: Dict[str, Result]

    def __init__(self, name: str, statement: str, results: Sequence[Result]):
        self.name = name
        self.statement = statement
        self.results = {}
        for result in results:
            if result.name in self.results:
                raise exc.ConfigurationError(
                    "Query `%s` has Result `%s` which name is not unique"
                    % (name, result.name)
                )
            self.results[result.name] = result

    def __repr__(self):
        return "Query(%r, %r)" % (self.name, self.statement)


class Database:
    """The connection all queries are executed against.

    ``active`` stays False until the engine was created and a first
    connection succeeded.

    """

    executor: Optional[Executor]

    def __init__(
        self,
        driver: str,
        dbqueries: Sequence[str],
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        dbname: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self.driver = driver
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.dbname = dbname
        self.name = name or dbname or driver
        self.dbqueries = list(dbqueries)
        self.active = False
        self.executor = None

    def __repr__(self):
        # no password
        return "Database(driver=%r, host=%r, port=%r, dbname=%r)" % (
            self.driver,
            self.host,
            self.port,
            self.dbname,
        )


class Settings:
    """A parsed SQL settings file."""

    def __init__(
        self,
        database: Database,
        queries: Mapping[str, Query],
        prefix: Sequence[str] = DEFAULT_PREFIX,
    ):
        for query_name in database.dbqueries:
            if query_name not in queries:
                raise exc.ConfigurationError(
                    "Query `%s` is listed in dbqueries but is not defined"
                    % query_name
                )
        self.database = database
        self.queries = dict(queries)
        self.prefix = tuple(prefix)

    def queries_to_execute(self):
        for query_name in self.database.dbqueries:
            yield self.queries[query_name]


def expand_file_name(file_name: str) -> str:
    """Replace ``$VARNAME`` path components with the variable's value.

    Variables that are not set are left as they are.

    """
    components = file_name.split("/")
    for idx, component in enumerate(components):
        if "$" in component:
            env_value = os.environ.get(component.lstrip("$"))
            if env_value:
                components[idx] = env_value
    return "/".join(components)


def load_settings(
    set_file: str,
    overrides: Optional[Mapping[str, Any]] = None,
    prefix: Sequence[str] = DEFAULT_PREFIX,
) -> Settings:
    """Read and parse the SQL settings file ``set_file``.

    ``overrides`` holds connection options given by the host, which take
    precedence over the ``database`` block of the file.

    """
    if "$" in set_file:
        set_file = expand_file_name(set_file)

    try:
        with open(set_file) as file_:
            data = file_.read()
    except IOError as err:
        raise exc.ConfigurationError(
            "Cannot read SQL settings file `%s`: %s" % (set_file, err)
        ) from err

    if not data.strip():
        raise exc.ConfigurationError(
            "SQL settings file `%s` is empty" % set_file
        )

    try:
        document = json.loads(data)
    except ValueError as err:
        raise exc.ConfigurationError(
            "Invalid structure of file `%s` to be unmarshalled" % set_file
        ) from err

    return parse_settings(document, overrides, prefix)


def parse_settings(
    document: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    prefix: Sequence[str] = DEFAULT_PREFIX,
) -> Settings:
    if not isinstance(document, Mapping):
        raise exc.ConfigurationError("SQL settings must be a JSON object")

    query_docs = document.get("queries", [])
    if not isinstance(query_docs, list):
        raise exc.ConfigurationError("SQL settings `queries` must be a list")

    database_doc = document.get("database", {})
    if not isinstance(database_doc, Mapping):
        raise exc.ConfigurationError(
            "SQL settings `database` must be a JSON object"
        )

    queries: Dict[str, Query] = {}
    for query_doc in query_docs:
        query = parse_query(query_doc)
        if query.name in queries:
            raise exc.ConfigurationError(
                "Query name `%s` is not unique" % query.name
            )
        queries[query.name] = query

    database = parse_database(database_doc, overrides)
    return Settings(database, queries, prefix)


def parse_database(
    options: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None
) -> Database:
    opts = {k: options[k] for k in DATABASE_OPTIONS if k in options}
    if overrides:
        opts.update(
            (k, overrides[k]) for k in DATABASE_OPTIONS if k in overrides
        )

    for required in ("driver", "dbqueries"):
        if not opts.get(required):
            raise exc.ConfigurationError(
                "Database option `%s` is required" % required
            )

    dbqueries = opts.pop("dbqueries")
    if isinstance(dbqueries, str):
        dbqueries = dbqueries.split(",")
    elif not isinstance(dbqueries, list) or not all(
        isinstance(q, str) for q in dbqueries
    ):
        raise exc.ConfigurationError(
            "Database option `dbqueries` must be a string or a list of "
            "strings, got %r" % (dbqueries,)
        )
    opts["dbqueries"] = [q.strip() for q in dbqueries if q.strip()]

    if opts.get("port") is not None:
        if isinstance(opts["port"], (bool, float)):
            raise exc.ConfigurationError(
                "Database option `port` is not a number: %r" % opts["port"]
            )
        try:
            opts["port"] = int(opts["port"])
        except (TypeError, ValueError) as err:
            raise exc.ConfigurationError(
                "Database option `port` is not a number: %r" % opts["port"]
            ) from err

    return Database(**opts)


def parse_query(query_doc: Mapping[str, Any]) -> Query:
    if not isinstance(query_doc, Mapping):
        raise exc.ConfigurationError(
            "Query must be a JSON object, got %r" % (query_doc,)
        )
    name = query_doc.get("name") or ""
    if not isinstance(name, str):
        raise exc.ConfigurationError(
            "Query name must be a string, got %r" % (name,)
        )
    if not name.strip():
        raise exc.ConfigurationError("Query name is empty")

    statement = query_doc.get("statement")
    if not statement:
        raise exc.ConfigurationError("Query `%s` has no statement" % name)
    if not isinstance(statement, str):
        raise exc.ConfigurationError(
            "Statement of query `%s` must be a string" % name
        )

    result_docs = query_doc.get("results", [])
    if not isinstance(result_docs, list):
        raise exc.ConfigurationError(
            "Results of query `%s` must be a list" % name
        )
    results = [parse_result(name, r) for r in result_docs]
    return Query(name, statement, results)


def parse_result(query_name: str, result_doc: Mapping[str, Any]) -> Result:
    if not isinstance(result_doc, Mapping):
        raise exc.ConfigurationError(
            "Result of query `%s` must be a JSON object, got %r"
            % (query_name, result_doc)
        )
    name = result_doc.get("result_name") or result_doc.get("name")
    if not name:
        raise exc.ConfigurationError(
            "Query `%s` has a Result without a name" % query_name
        )
    if not isinstance(name, str):
        raise exc.ConfigurationError(
            "Result name in query `%s` must be a string, got %r"
            % (query_name, name)
        )
    value_from = result_doc.get("value_from")
    if not value_from or not isinstance(value_from, str):
        raise exc.ConfigurationError(
            "Result `%s` of query `%s` has no value_from column"
            % (name, query_name)
        )
    segment_docs = result_doc.get("namespace")
    if segment_docs is None:
        segment_docs = []
    elif not isinstance(segment_docs, list):
        raise exc.ConfigurationError(
            "Namespace of result `%s` in query `%s` must be a list"
            % (name, query_name)
        )
    segments = [
        parse_segment(query_name, name, segment_doc)
        for segment_doc in segment_docs
    ]
    return Result(
        name,
        segments,
        value_from,
        instance_prefix=result_doc.get("instance_prefix", ""),
    )


def parse_segment(query_name, result_name, segment_doc):
    if not isinstance(segment_doc, Mapping):
        raise exc.ConfigurationError(
            "Namespace element of result `%s` in query `%s` must be a "
            "JSON object, got %r" % (result_name, query_name, segment_doc)
        )
    type_ = segment_doc.get("type")

    if type_ == "static":
        string = segment_doc.get("string")
        if not string or not isinstance(string, str):
            raise exc.ConfigurationError(
                "Static namespace element of result `%s` in query `%s` "
                "has no string" % (result_name, query_name)
            )
        return StaticSegment(string)
    elif type_ in ("dynamic", "expand"):
        instance_from = segment_doc.get("instance_from")
        if not instance_from or not isinstance(instance_from, str):
            raise exc.ConfigurationError(
                "%s namespace element of result `%s` in query `%s` "
                "has no instance_from column"
                % (type_.capitalize(), result_name, query_name)
            )
        cls = DynamicSegment if type_ == "dynamic" else ExpandSegment
        return cls(
            segment_doc.get("name") or instance_from,
            segment_doc.get("description", ""),
            instance_from,
        )
    elif type_ == "connection":
        return ConnectionSegment(
            **{
                k: segment_doc[k]
                for k in ("name", "description")
                if k in segment_doc
            }
        )
    else:
        raise exc.ConfigurationError(
            "Namespace element of result `%s` in query `%s` has unknown "
            "type %r" % (result_name, query_name, type_)
        )
