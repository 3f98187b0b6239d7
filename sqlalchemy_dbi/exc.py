"""Exceptions raised by sqlalchemy-dbi.

Configuration and connection errors are fatal and are surfaced to the
host; a :class:`.QueryError` is recovered within the collection cycle
and only results in a log message.

"""


class DbiError(Exception):
    """Base for all sqlalchemy-dbi errors."""


class ConfigurationError(DbiError):
    """The SQL settings file or the host configuration is invalid."""


class DbiConnectionError(DbiError):
    """The configured database could not be opened."""


class QueryError(DbiError):
    """A single SQL statement failed to execute."""

    def __init__(self, query_name, orig):
        super().__init__(
            "Cannot execute query %s: %s" % (query_name, orig)
        )
        self.query_name = query_name
        self.orig = orig


class DuplicateNamespaceError(DbiError):
    """Two metrics in one collection cycle resolved to the same path."""

    def __init__(self, path):
        super().__init__("Namespace `%s` has to be unique, but is not" % path)
        self.path = path


class NoDataError(DbiError):
    """No data was obtained from any of the requested queries."""
