"""
Metrics about the exporter process itself.
"""
import platform
import time
from typing import Iterator, List, Optional

from prometheus_client.core import GaugeMetricFamily, Metric

from .constants import metric_name

SUBSYSTEM = "exporter"


class ExporterCollector:
    """gcp_exporter_start_time and gcp_exporter_build_info."""

    def __init__(self, git_commit: str = "", os_version: Optional[str] = None,
                 python_version: Optional[str] = None, start_time: Optional[float] = None):
        self.git_commit = git_commit
        self.os_version = os_version if os_version is not None else platform.release()
        self.python_version = python_version if python_version is not None else platform.python_version()
        self.start_time = int(start_time if start_time is not None else time.time())

    def _families(self) -> List[GaugeMetricFamily]:
        start = GaugeMetricFamily(
            metric_name(SUBSYSTEM, "start_time"),
            "start time in Unix epoch seconds",
        )
        build = GaugeMetricFamily(
            metric_name(SUBSYSTEM, "build_info"),
            "A metric with a constant '1' value labeled by OS version, Python version, "
            "and the Git commit of the exporter",
            labels=["os_version", "python_version", "git_commit"],
        )
        return [start, build]

    def describe(self) -> Iterator[Metric]:
        yield from self._families()

    def collect(self) -> Iterator[Metric]:
        start, build = self._families()
        start.add_metric([], float(self.start_time))
        build.add_metric([self.os_version, self.python_version, self.git_commit], 1.0)
        yield start
        yield build
