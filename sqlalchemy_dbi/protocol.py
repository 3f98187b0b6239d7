"""Translate collected metrics into collectd values.

collectd only carries numbers, so metrics whose value is a string or
NULL are not dispatched.

"""
from __future__ import annotations

from typing import Any
from typing import Iterable
from typing import Optional
from typing import Sequence
from typing import TYPE_CHECKING
from typing import Union

if TYPE_CHECKING:
    from logging import Logger

    from .collector import Metric


DEFAULT_INTERVAL = 10

GAUGE = "gauge"


class Values:
    """A mirror object of collectd.Values"""

    __slots__ = (
        "type",
        "type_instance",
        "plugin",
        "plugin_instance",
        "host",
        "time",
        "interval",
        "values",
    )

    type: str
    type_instance: str
    plugin: str
    plugin_instance: str
    host: str
    time: float
    interval: int
    values: Sequence[Union[float, int]]

    def __init__(self, **kw: Any):
        for k in self.__slots__:
            setattr(self, k, kw[k] if k in kw else None)
        if self.interval is None:
            self.interval = DEFAULT_INTERVAL

    def _asdict(self, omit_none=False):
        return {
            k: getattr(self, k)
            for k in self.__slots__
            if not omit_none or getattr(self, k) is not None
        }

    def __eq__(self, other):
        if not isinstance(other, Values):
            return False

        return [getattr(self, k) for k in self.__slots__] == [
            getattr(other, k) for k in self.__slots__
        ]

    @classmethod
    def from_metric(
        cls, metric: Metric, plugin: str, prefix_length: int = 0
    ) -> Optional[Values]:
        """Return the values for ``metric``, or None if its value is not
        a number.

        The namespace below the prefix becomes the type instance.

        """
        value = metric.value
        if isinstance(value, bool):
            value = int(value)
        elif not isinstance(value, (int, float)):
            return None

        path = metric.namespace.strings()[prefix_length:]
        return cls(
            type=GAUGE,
            type_instance=".".join(path),
            plugin=plugin,
            time=metric.timestamp,
            values=[value],
        )

    def send_to_collectd(self, collectd, log, use_configured_interval=True):
        data = self._asdict(omit_none=True)
        if use_configured_interval:
            # collectd-python(5): a non-positive interval means the
            # interval from the config file is used
            data["interval"] = 0
        v = collectd.Values(**data)
        log.debug("send[collectd process] -> %r", v)
        v.dispatch()

    def __repr__(self):
        return "sqlalchemy_dbi.Values(%s)" % (
            ", ".join("%s=%r" % (k, getattr(self, k)) for k in self.__slots__),
        )


def dispatch_metrics(
    collectd,
    metrics: Iterable[Metric],
    plugin: str,
    log: Logger,
    prefix_length: int = 0,
) -> int:
    """Send ``metrics`` into the collectd process; return how many were
    dispatched.

    """
    dispatched = 0
    for metric in metrics:
        values_obj = Values.from_metric(metric, plugin, prefix_length)
        if values_obj is None:
            log.debug("skipping non-numeric metric %r", metric)
            continue
        values_obj.send_to_collectd(collectd, log)
        dispatched += 1
    return dispatched
