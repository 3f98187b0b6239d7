"""collectd plugin running the queries of a SQL settings file.

Configure within collectd.conf::

    <LoadPlugin python>
      Globals true
    </LoadPlugin>

    <Plugin python>
      Import "sqlalchemy_dbi.server.plugin"
      <Module "sqlalchemy_dbi.server.plugin">
        SetFile "/etc/collectd/$ENVIRONMENT/dbi.json"
        LogLevel "info"
        # connection options override those of the file
        password "tiger"
      </Module>
    </Plugin>

"""
from __future__ import annotations

import logging
import time

import collectd  # type: ignore[import]

from .logging import CollectdHandler
from .. import config
from .. import exc
from .. import protocol
from ..collector import DbiCollector
from ..collector import PLUGIN_NAME

log = logging.getLogger(__name__)

collector_: DbiCollector


def start_plugin(config_):
    global collector_

    config_dict = {
        elem.key.lower(): tuple(elem.values) for elem in config_.children
    }

    CollectdHandler.setup(
        "sqlalchemy_dbi", config_dict.get("loglevel", ("info",))[0]
    )

    set_file = config_dict.get("setfile", (None,))[0]
    if not set_file:
        raise exc.ConfigurationError("SetFile option is required")

    prefix = config_dict.get("prefix", config.DEFAULT_PREFIX)
    overrides = {
        key: values[0]
        for key, values in config_dict.items()
        if key in config.DATABASE_OPTIONS and values
    }

    collector_ = DbiCollector.from_set_file(set_file, overrides, prefix)

    log.info(
        "sqlalchemy_dbi loaded %d metrics from %s for database %s",
        len(collector_.describe_metrics()),
        set_file,
        collector_.database.name,
    )


def read(data=None):
    """Run the configured queries and dispatch their numeric results to
    the collectd server in which we are embedded.

    """
    now = time.time()
    metrics = collector_.collect_metrics(collector_.describe_metrics(), now)
    protocol.dispatch_metrics(
        collectd,
        metrics,
        PLUGIN_NAME,
        log,
        prefix_length=len(collector_.settings.prefix),
    )


def shutdown():
    collector_.close()


collectd.register_config(start_plugin)
collectd.register_read(read)
collectd.register_shutdown(shutdown)
