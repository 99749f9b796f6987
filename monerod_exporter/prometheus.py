"""Gauge model and Prometheus text exposition rendering.

Rendering is a straight, order-preserving transliteration of the metric
list: the same list always renders to the same bytes. HELP lines carry no
description text.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from prometheus_client.utils import floatToGoString

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

GAUGE = "gauge"


class RenderingError(Exception):
    pass


def _escape_label_value(value):
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


@dataclass(frozen=True)
class MetricLabel:
    name: str
    value: str


@dataclass(frozen=True)
class MetricValue:
    label: Optional[MetricLabel]
    value: float


@dataclass(frozen=True)
class Metric:
    type: str
    name: str
    values: Tuple[MetricValue, ...]

    def __post_init__(self):
        if not METRIC_NAME_RE.match(self.name):
            raise ValueError(f"invalid metric name: {self.name!r}")
        for v in self.values:
            if v.label is not None and not LABEL_NAME_RE.match(v.label.name):
                raise ValueError(f"invalid label name: {v.label.name!r}")

    @classmethod
    def gauge(cls, name, value):
        return cls(GAUGE, name, (MetricValue(None, value),))

    @classmethod
    def gauge_with_label_values(cls, name, label_name, values):
        """One sample per ``(label_value, value)`` pair, all under ``label_name``."""
        return cls(
            GAUGE,
            name,
            tuple(MetricValue(MetricLabel(label_name, label_value), value) for label_value, value in values),
        )

    def render(self):
        lines = [f"# HELP {self.name}\n", f"# TYPE {self.name} {self.type}\n"]
        for v in self.values:
            try:
                formatted = floatToGoString(v.value)
            except (TypeError, ValueError) as e:
                raise RenderingError(f"cannot render value {v.value!r} of {self.name}") from e
            if v.label is None:
                lines.append(f"{self.name} {formatted}\n")
            else:
                label_value = _escape_label_value(v.label.value)
                lines.append(f'{self.name}{{{v.label.name}="{label_value}"}} {formatted}\n')
        return "".join(lines)


def render_metrics(metrics):
    return "".join(m.render() for m in metrics)
