"""Wall-clock and CPU time recording for named spans."""

import os
import time
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass
class TimeMeasurement:
    span_name: str
    wall_time: float
    process_user_time: float
    process_system_time: float
    children_user_time: float
    children_system_time: float


class TimeRecorder:
    """Collects :class:`TimeMeasurement` entries for ``with recorder.measure(...)`` blocks."""

    def __init__(self):
        self.measurements: list[TimeMeasurement] = []

    @contextmanager
    def measure(self, span_name: str):
        start_wall = time.perf_counter()
        start = os.times()
        try:
            yield
        finally:
            end = os.times()
            self.measurements.append(
                TimeMeasurement(
                    span_name=span_name,
                    wall_time=time.perf_counter() - start_wall,
                    process_user_time=end.user - start.user,
                    process_system_time=end.system - start.system,
                    children_user_time=end.children_user - start.children_user,
                    children_system_time=end.children_system - start.children_system,
                )
            )

    def total(self, span_name: str) -> float:
        return sum(m.wall_time for m in self.measurements if m.span_name == span_name)
