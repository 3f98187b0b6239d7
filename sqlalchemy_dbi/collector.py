from __future__ import annotations

import logging
import time
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Set
from typing import Tuple

from . import config
from . import exc
from . import executor
from . import namespace
from .namespace import Namespace
from .normalize import normalize
from .normalize import to_string


log = logging.getLogger(__name__)

PLUGIN_NAME = "dbi"
PLUGIN_VERSION = 1


class MetricDescriptor:
    """A catalogue entry, as returned by
    :meth:`.DbiCollector.describe_metrics` and passed back by the host
    to request collection.

    """

    __slots__ = "namespace", "tags", "version", "config"

    def __init__(
        self,
        namespace: Namespace,
        tags: Optional[Mapping[str, str]] = None,
        version: int = PLUGIN_VERSION,
        config: Optional[Mapping[str, Any]] = None,
    ):
        self.namespace = namespace
        self.tags = dict(tags or {})
        self.version = version
        self.config = dict(config or {})

    def __eq__(self, other):
        if not isinstance(other, MetricDescriptor):
            return False
        return [getattr(self, k) for k in self.__slots__] == [
            getattr(other, k) for k in self.__slots__
        ]

    def __repr__(self):
        return "MetricDescriptor(%s, version=%r)" % (
            self.namespace,
            self.version,
        )


class Metric:
    """One collected value."""

    __slots__ = "namespace", "value", "timestamp", "tags", "version"

    namespace: Namespace
    tags: Dict[str, str]

    def __init__(self, namespace, value, timestamp, tags, version):
        self.namespace = namespace
        self.value = value
        self.timestamp = timestamp
        self.tags = tags
        self.version = version

    def __repr__(self):
        return "Metric(%s, value=%r, timestamp=%r)" % (
            self.namespace,
            self.value,
            self.timestamp,
        )


class DbiCollector:
    """Collects the metrics declared by one SQL settings file.

    Templates are compiled when the collector is constructed; the
    database is opened on the first call to :meth:`.collect_metrics`.

    """

    def __init__(self, settings: config.Settings):
        self.settings = settings
        self.database = settings.database
        namespace.compile_settings(settings)
        self._open_attempted = False

    @classmethod
    def from_set_file(
        cls,
        set_file: str,
        overrides: Optional[Mapping[str, Any]] = None,
        prefix: Sequence[str] = config.DEFAULT_PREFIX,
    ) -> DbiCollector:
        return cls(config.load_settings(set_file, overrides, prefix))

    def describe_metrics(self) -> List[MetricDescriptor]:
        """Return one descriptor per configured result.

        No SQL is executed.

        """
        return [
            MetricDescriptor(result.template.copy())
            for query in self.settings.queries_to_execute()
            for result in query.results.values()
        ]

    def open(self) -> None:
        """Open the database.

        Only the first call does anything; if that fails, the database
        remains inactive and later collection cycles skip its queries.

        """
        if self._open_attempted:
            return
        self._open_attempted = True
        executor.open_database(self.database)

    def close(self) -> None:
        if self.database.executor is not None:
            self.database.executor.dispose()
            self.database.executor = None
        self.database.active = False

    def collect_metrics(
        self,
        requested: Sequence[MetricDescriptor],
        timestamp: Optional[float] = None,
    ) -> List[Metric]:
        """Execute the queries behind ``requested`` and return the
        metrics produced from their rows.

        Raises :class:`.DuplicateNamespaceError` if two metrics resolve
        to the same path and :class:`.NoDataError` if nothing could be
        collected at all.

        """
        self.open()

        if not requested:
            return []

        database = self.database
        if not database.active:
            log.warning(
                "Cannot execute queries for database %s, it is inactive "
                "(connection was not established properly)",
                database.name,
            )
            return []

        if timestamp is None:
            timestamp = time.time()

        executor_ = database.executor
        executor_.clear_cached_results()

        metrics: List[Metric] = []
        seen: Set[Tuple[str, ...]] = set()
        processed: Set[str] = set()

        for descriptor in requested:
            requested_ns = str(descriptor.namespace)
            # results sharing a template are one catalogue entry
            if requested_ns in processed:
                continue
            processed.add(requested_ns)

            for query, result in self._results_for(requested_ns):
                try:
                    result_set = executor_.query(query.name, query.statement)
                except exc.QueryError as err:
                    log.warning(
                        "Cannot execute query %s for database %s: %s",
                        query.name,
                        database.name,
                        err.orig,
                    )
                    continue

                for metric in self._materialize(
                    query, result, result_set, descriptor, timestamp
                ):
                    path = metric.namespace.strings()
                    if path in seen:
                        raise exc.DuplicateNamespaceError(
                            str(metric.namespace)
                        )
                    seen.add(path)
                    metrics.append(metric)

        if not metrics:
            raise exc.NoDataError("No data obtained from defined queries")

        return metrics

    def _results_for(
        self, requested_ns: str
    ) -> Iterator[Tuple[config.Query, config.Result]]:
        for query in self.settings.queries_to_execute():
            for result in query.results.values():
                if str(result.template) == requested_ns:
                    yield query, result

    def _materialize(
        self,
        query: config.Query,
        result: config.Result,
        result_set: executor.QueryResultSet,
        descriptor: MetricDescriptor,
        timestamp: float,
    ) -> Iterator[Metric]:
        values = result_set.column(result.value_from)
        if values is None:
            log.warning(
                "Result %s of query %s: value column %s is not in %s",
                result.name,
                query.name,
                result.value_from,
                list(result_set.columns),
            )
            return

        template = result.template
        instance_columns = {}
        for elem in template.dynamic_elements():
            segment = elem.segment
            if isinstance(segment, config.ConnectionSegment):
                continue
            column = result_set.column(segment.instance_from)
            if column is None:
                log.warning(
                    "Result %s of query %s: instance column %s is not in "
                    "%s, using an empty instance",
                    result.name,
                    query.name,
                    segment.instance_from,
                    list(result_set.columns),
                )
            instance_columns[elem.index] = column

        for row in range(result_set.row_count):
            nspace = template.copy()
            for elem in nspace.dynamic_elements():
                if isinstance(elem.segment, config.ConnectionSegment):
                    elem.value = self.database.name
                    continue

                column = instance_columns[elem.index]
                elem.value = (
                    to_string(column[row]) if column is not None else ""
                )
                if isinstance(elem.segment, config.ExpandSegment):
                    elem.name = ""
                    elem.description = ""

            yield Metric(
                namespace=nspace,
                value=normalize(values[row]),
                timestamp=timestamp,
                tags=dict(descriptor.tags),
                version=descriptor.version,
            )
