from . import config


class TestBase:
    def assertEqual(self, a, b):
        assert a == b, "%r != %r" % (a, b)

    def assertRaises(self, exc_cls, fn, *arg, **kw):
        try:
            fn(*arg, **kw)
        except exc_cls as err:
            return err
        else:
            assert False, "Callable did not raise an exception"


def query_doc(name, statement, *results):
    return {"name": name, "statement": statement, "results": list(results)}


def result_doc(name, value_from, *namespace):
    return {
        "result_name": name,
        "value_from": value_from,
        "namespace": list(namespace),
    }


def static(string):
    return {"type": "static", "string": string}


def dynamic(instance_from, name=None, description=""):
    return {
        "type": "dynamic",
        "name": name or instance_from,
        "description": description,
        "instance_from": instance_from,
    }


def expand(instance_from, name=None, description=""):
    return dict(dynamic(instance_from, name, description), type="expand")


def connection():
    return {"type": "connection"}


def make_settings(*queries, dbqueries=None, **database):
    """Settings for an in-memory SQLite database named "testdb"."""

    database.setdefault("driver", "sqlite")
    database.setdefault("name", "testdb")
    database["dbqueries"] = (
        dbqueries
        if dbqueries is not None
        else ", ".join(q["name"] for q in queries)
    )
    return config.parse_settings(
        {"database": database, "queries": list(queries)}
    )
