import logging

import pytest
from sqlalchemy import event

from .. import collector
from .. import exc
from .. import namespace
from .. import testing
from ..testing import connection
from ..testing import dynamic
from ..testing import expand
from ..testing import query_doc
from ..testing import result_doc
from ..testing import static

USERS = "SELECT 1 AS id, 'a' AS name UNION ALL SELECT 2, 'b'"


@pytest.fixture
def statements():
    """Record statements sent to the database of a collector."""

    recorded = []

    def _listen(dbi_collector):
        dbi_collector.open()

        @event.listens_for(
            dbi_collector.database.executor.engine, "before_cursor_execute"
        )
        def _before_cursor_execute(conn, cursor, statement, *arg):
            recorded.append(statement)

        return recorded

    return _listen


class CollectorTest(testing.TestBase):
    @pytest.fixture
    def make_collector(self):
        collectors = []

        def _make(*queries, **kw):
            dbi_collector = collector.DbiCollector(
                testing.make_settings(*queries, **kw)
            )
            collectors.append(dbi_collector)
            return dbi_collector

        yield _make

        for dbi_collector in collectors:
            dbi_collector.close()

    def _collect_all(self, dbi_collector, **kw):
        return dbi_collector.collect_metrics(
            dbi_collector.describe_metrics(), **kw
        )

    def test_describe_one_per_result(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
                result_doc("count", "id", static("count")),
            ),
            query_doc(
                "tables",
                "SELECT 't' AS relname, 5 AS n",
                result_doc("live", "n", connection(), expand("relname")),
            ),
        )

        descriptors = dbi_collector.describe_metrics()
        self.assertEqual(
            [str(d.namespace) for d in descriptors],
            [
                "/sqlalchemy/dbi/users/*",
                "/sqlalchemy/dbi/count",
                "/sqlalchemy/dbi/*/*",
            ],
        )
        self.assertEqual(
            [[e.kind for e in d.namespace][2:] for d in descriptors],
            [["static", "dynamic"], ["static"], ["connection", "expand"]],
        )
        self.assertEqual(
            {d.version for d in descriptors}, {collector.PLUGIN_VERSION}
        )

        # describing doesn't touch the database
        assert dbi_collector.database.executor is None

    def test_describe_is_idempotent(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            )
        )
        self.assertEqual(
            dbi_collector.describe_metrics(), dbi_collector.describe_metrics()
        )

    def test_describe_only_queries_to_execute(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
            query_doc(
                "unused",
                "SELECT 1 AS v",
                result_doc("v", "v", static("unused")),
            ),
            dbqueries="users",
        )
        self.assertEqual(
            [str(d.namespace) for d in dbi_collector.describe_metrics()],
            ["/sqlalchemy/dbi/users/*"],
        )

    def test_dynamic_segment(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc(
                    "name",
                    "name",
                    static("users"),
                    dynamic("id", "user_id", "id of the user"),
                ),
            )
        )
        metrics = self._collect_all(dbi_collector, timestamp=1000)

        self.assertEqual(
            [(str(m.namespace), m.value) for m in metrics],
            [
                ("/sqlalchemy/dbi/users/1", "a"),
                ("/sqlalchemy/dbi/users/2", "b"),
            ],
        )
        for metric in metrics:
            elem = metric.namespace[3]
            self.assertEqual(
                (elem.name, elem.description), ("user_id", "id of the user")
            )
            self.assertEqual(metric.timestamp, 1000)
            self.assertEqual(metric.version, collector.PLUGIN_VERSION)

    def test_template_is_not_bound(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            )
        )
        self._collect_all(dbi_collector)
        self.assertEqual(
            [str(d.namespace) for d in dbi_collector.describe_metrics()],
            ["/sqlalchemy/dbi/users/*"],
        )

    def test_expand_segment(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc(
                    "id",
                    "id",
                    static("users"),
                    expand("name", "user_name", "name of the user"),
                ),
            )
        )
        metrics = self._collect_all(dbi_collector)

        self.assertEqual(
            [(m.namespace.strings()[-1], m.value) for m in metrics],
            [("a", 1), ("b", 2)],
        )
        for metric in metrics:
            elem = metric.namespace[-1]
            self.assertEqual((elem.name, elem.description), ("", ""))

    def test_connection_segment(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                "SELECT 'testdb' AS id, 5 AS n UNION ALL SELECT 'x', 6",
                result_doc(
                    "n", "n", connection(), static("users"), dynamic("id")
                ),
            ),
            name="primary",
        )
        metrics = self._collect_all(dbi_collector)

        self.assertEqual(
            [str(m.namespace) for m in metrics],
            [
                "/sqlalchemy/dbi/primary/users/testdb",
                "/sqlalchemy/dbi/primary/users/x",
            ],
        )

    def test_tags_and_version_from_request(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            )
        )
        (descriptor,) = dbi_collector.describe_metrics()
        requested = collector.MetricDescriptor(
            descriptor.namespace, tags={"env": "test"}, version=3
        )

        metrics = dbi_collector.collect_metrics([requested])
        self.assertEqual(len(metrics), 2)
        for metric in metrics:
            self.assertEqual(metric.tags, {"env": "test"})
            self.assertEqual(metric.version, 3)

    def test_only_requested_namespaces(self, make_collector, statements):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
            query_doc(
                "other",
                "SELECT 7 AS v",
                result_doc("v", "v", static("other")),
            ),
        )
        recorded = statements(dbi_collector)

        descriptors = dbi_collector.describe_metrics()
        metrics = dbi_collector.collect_metrics(descriptors[1:])

        self.assertEqual(
            [(str(m.namespace), m.value) for m in metrics],
            [("/sqlalchemy/dbi/other", 7)],
        )
        self.assertEqual(recorded, ["SELECT 7 AS v"])

    def test_requested_as_plain_namespace(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            )
        )
        requested = namespace.Namespace.from_prefix(
            ["sqlalchemy", "dbi", "users", "*"]
        )
        metrics = dbi_collector.collect_metrics(
            [collector.MetricDescriptor(requested)]
        )
        self.assertEqual(len(metrics), 2)

    def test_normalizes_values(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "blobs",
                "SELECT X'6869' AS data, X'6b6579' AS label",
                result_doc("data", "data", static("blobs"), expand("label")),
            )
        )
        (metric,) = self._collect_all(dbi_collector)
        self.assertEqual(str(metric.namespace), "/sqlalchemy/dbi/blobs/key")
        self.assertEqual(metric.value, "hi")

    def test_column_case_mismatch(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "NAME", static("users"), dynamic("ID")),
            )
        )
        metrics = self._collect_all(dbi_collector)
        self.assertEqual(
            [(str(m.namespace), m.value) for m in metrics],
            [
                ("/sqlalchemy/dbi/users/1", "a"),
                ("/sqlalchemy/dbi/users/2", "b"),
            ],
        )

    def test_missing_instance_column(self, make_collector, caplog):
        dbi_collector = make_collector(
            query_doc(
                "users",
                "SELECT 5 AS n",
                result_doc("n", "n", static("users"), expand("nope")),
            )
        )
        with caplog.at_level(logging.WARNING, "sqlalchemy_dbi"):
            (metric,) = self._collect_all(dbi_collector)

        self.assertEqual(metric.namespace.strings()[-1], "")
        self.assertEqual(metric.value, 5)
        assert "instance column nope" in caplog.text

    def test_missing_value_column(self, make_collector, caplog):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("bad", "nope", static("bad"), dynamic("id")),
                result_doc("good", "name", static("good"), dynamic("id")),
            )
        )
        with caplog.at_level(logging.WARNING, "sqlalchemy_dbi"):
            metrics = self._collect_all(dbi_collector)

        self.assertEqual(
            [str(m.namespace) for m in metrics],
            ["/sqlalchemy/dbi/good/1", "/sqlalchemy/dbi/good/2"],
        )
        assert "value column nope" in caplog.text

    def test_failing_query_is_skipped(self, make_collector, caplog):
        dbi_collector = make_collector(
            query_doc(
                "broken",
                "SELECT * FROM no_such_table",
                result_doc("b", "v", static("broken")),
            ),
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
        )
        with caplog.at_level(logging.WARNING, "sqlalchemy_dbi"):
            metrics = self._collect_all(dbi_collector)

        self.assertEqual(len(metrics), 2)
        assert "Cannot execute query broken for database testdb" in (
            caplog.text
        )

    def test_no_data(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "broken",
                "SELECT * FROM no_such_table",
                result_doc("b", "v", static("broken")),
            )
        )
        self.assertRaises(exc.NoDataError, self._collect_all, dbi_collector)

    def test_no_rows_is_no_data(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "empty",
                "SELECT 1 AS v WHERE 1 = 0",
                result_doc("v", "v", static("empty")),
            )
        )
        self.assertRaises(exc.NoDataError, self._collect_all, dbi_collector)

    def test_nothing_requested(self, make_collector):
        dbi_collector = make_collector(
            query_doc("users", USERS, result_doc("n", "name", static("u")))
        )
        self.assertEqual(dbi_collector.collect_metrics([]), [])

    def test_duplicate_rows(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                "SELECT 1 AS id, 'a' AS name UNION ALL SELECT 1, 'b'",
                result_doc("name", "name", static("users"), dynamic("id")),
            )
        )
        err = self.assertRaises(
            exc.DuplicateNamespaceError, self._collect_all, dbi_collector
        )
        self.assertEqual(err.path, "/sqlalchemy/dbi/users/1")

    def test_duplicate_results(self, make_collector):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
            query_doc(
                "more_users",
                "SELECT 2 AS id, 'c' AS name",
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
        )
        err = self.assertRaises(
            exc.DuplicateNamespaceError,
            dbi_collector.collect_metrics,
            dbi_collector.describe_metrics()[:1],
        )
        self.assertEqual(err.path, "/sqlalchemy/dbi/users/2")

    def test_shared_template_distinct_rows(self, make_collector, statements):
        dbi_collector = make_collector(
            query_doc(
                "users",
                "SELECT 1 AS id, 'a' AS name",
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
            query_doc(
                "more_users",
                "SELECT 2 AS id, 'c' AS name",
                result_doc("name", "name", static("users"), dynamic("id")),
            ),
        )
        recorded = statements(dbi_collector)

        descriptors = dbi_collector.describe_metrics()
        self.assertEqual(
            [str(d.namespace) for d in descriptors],
            ["/sqlalchemy/dbi/users/*", "/sqlalchemy/dbi/users/*"],
        )

        metrics = dbi_collector.collect_metrics(descriptors)
        self.assertEqual(
            [(str(m.namespace), m.value) for m in metrics],
            [
                ("/sqlalchemy/dbi/users/1", "a"),
                ("/sqlalchemy/dbi/users/2", "c"),
            ],
        )
        self.assertEqual(
            recorded,
            ["SELECT 1 AS id, 'a' AS name", "SELECT 2 AS id, 'c' AS name"],
        )

    def test_one_execution_per_cycle(self, make_collector, statements):
        dbi_collector = make_collector(
            query_doc(
                "users",
                USERS,
                result_doc("name", "name", static("names"), dynamic("id")),
                result_doc("id", "id", static("ids"), expand("name")),
            )
        )
        recorded = statements(dbi_collector)

        metrics = self._collect_all(dbi_collector)
        self.assertEqual(len(metrics), 4)
        self.assertEqual(recorded, [USERS])

        self._collect_all(dbi_collector)
        self.assertEqual(recorded, [USERS, USERS])


class CollectorConnectionTest(testing.TestBase):
    def _collector(self, tmp_path):
        return collector.DbiCollector(
            testing.make_settings(
                query_doc(
                    "users",
                    USERS,
                    result_doc(
                        "name", "name", static("users"), dynamic("id")
                    ),
                ),
                dbname=str(tmp_path / "no" / "such" / "dir" / "test.db"),
            )
        )

    def test_connection_error_is_raised_once(self, tmp_path):
        dbi_collector = self._collector(tmp_path)
        descriptors = dbi_collector.describe_metrics()

        self.assertRaises(
            exc.DbiConnectionError, dbi_collector.collect_metrics, descriptors
        )
        assert not dbi_collector.database.active

        # inactive from now on; skipped without error
        self.assertEqual(dbi_collector.collect_metrics(descriptors), [])
        self.assertEqual(dbi_collector.collect_metrics(descriptors), [])

    def test_opened_lazily(self, tmp_path):
        dbi_collector = self._collector(tmp_path)
        assert dbi_collector.database.executor is None
        self.assertEqual(len(dbi_collector.describe_metrics()), 1)

    def test_from_set_file(self, tmp_path):
        set_file = tmp_path / "dbi.json"
        set_file.write_text(
            """{
              "database": {"driver": "sqlite", "dbqueries": "users"},
              "queries": [
                {"name": "users",
                 "statement": "SELECT 1 AS id, 'a' AS name",
                 "results": [
                   {"result_name": "name", "value_from": "name",
                    "namespace": [{"type": "static", "string": "users"},
                                  {"type": "dynamic", "name": "id",
                                   "instance_from": "id"}]}]}]
            }"""
        )
        dbi_collector = collector.DbiCollector.from_set_file(
            str(set_file), prefix=["intel", "dbi"]
        )
        try:
            (metric,) = self._collect_all(dbi_collector)
        finally:
            dbi_collector.close()
        self.assertEqual(str(metric.namespace), "/intel/dbi/users/1")
        self.assertEqual(metric.value, "a")

    def _collect_all(self, dbi_collector):
        return dbi_collector.collect_metrics(dbi_collector.describe_metrics())
