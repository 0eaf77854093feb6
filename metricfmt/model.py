"""Core data types of the metric exposition formats."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Mapping, Optional, Union

TEXT_VERSION = "0.0.4"
PROTO_TYPE = "application/vnd.google.protobuf"
PROTO_PROTOCOL = "io.prometheus.client.MetricFamily"
PROTO_FMT = f"{PROTO_TYPE}; proto={PROTO_PROTOCOL};"
OPENMETRICS_TYPE = "application/openmetrics-text"
OPENMETRICS_VERSION = "0.0.1"

HDR_CONTENT_TYPE = "Content-Type"
HDR_ACCEPT = "Accept"

METRIC_NAME_LABEL = "__name__"
QUANTILE_LABEL = "quantile"
BUCKET_LABEL = "le"

_SEPARATOR_BYTE = 0xFF
_FNV_OFFSET = 14695981039346656037
_FNV_PRIME = 1099511628211
_MASK64 = (1 << 64) - 1

_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class Format(str, Enum):
    """HTTP content type of each wire protocol."""

    UNKNOWN = "<unknown>"
    TEXT = f"text/plain; version={TEXT_VERSION}; charset=utf-8"
    PROTO_DELIM = f"{PROTO_FMT} encoding=delimited"
    PROTO_TEXT = f"{PROTO_FMT} encoding=text"
    PROTO_COMPACT = f"{PROTO_FMT} encoding=compact-text"
    OPENMETRICS = (
        f"{OPENMETRICS_TYPE}; version={OPENMETRICS_VERSION}; charset=utf-8"
    )

    def __str__(self) -> str:
        return self.value


class MetricType(IntEnum):
    """Kinds of metric families, numbered as on the wire."""

    COUNTER = 0
    GAUGE = 1
    SUMMARY = 2
    UNTYPED = 3
    HISTOGRAM = 4


@dataclass
class LabelPair:
    name: str = ""
    value: str = ""


@dataclass
class Exemplar:
    labels: list[LabelPair] = field(default_factory=list)
    value: float = 0.0
    timestamp_ns: Optional[int] = None


@dataclass
class Counter:
    value: float = 0.0
    exemplar: Optional[Exemplar] = None


@dataclass
class Gauge:
    value: float = 0.0


@dataclass
class Untyped:
    value: float = 0.0


@dataclass
class Quantile:
    quantile: float = 0.0
    value: float = 0.0


@dataclass
class Summary:
    sample_count: Optional[int] = None
    sample_sum: Optional[float] = None
    quantiles: list[Quantile] = field(default_factory=list)


@dataclass
class Bucket:
    cumulative_count: int = 0
    upper_bound: float = 0.0
    exemplar: Optional[Exemplar] = None


@dataclass
class Histogram:
    sample_count: Optional[int] = None
    sample_sum: Optional[float] = None
    buckets: list[Bucket] = field(default_factory=list)


@dataclass
class Metric:
    labels: list[LabelPair] = field(default_factory=list)
    gauge: Optional[Gauge] = None
    counter: Optional[Counter] = None
    summary: Optional[Summary] = None
    untyped: Optional[Untyped] = None
    histogram: Optional[Histogram] = None
    timestamp_ms: Optional[int] = None


@dataclass
class MetricFamily:
    name: str = ""
    help: Optional[str] = None
    type: Optional[int] = None
    metrics: list[Metric] = field(default_factory=list)

    @property
    def metric_type(self) -> int:
        """The family's type, counter when none is set."""
        return MetricType.COUNTER if self.type is None else self.type


@dataclass
class Sample:
    """A single value of a series at a point in time (milliseconds)."""

    metric: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0


def is_valid_metric_name(name: str) -> bool:
    """Whether name is a legal metric name."""
    return _METRIC_NAME_RE.fullmatch(name) is not None


def is_valid_label_name(name: str) -> bool:
    """Whether name is a legal label name."""
    return _LABEL_NAME_RE.fullmatch(name) is not None


def is_valid_label_value(value: Union[str, bytes]) -> bool:
    """Whether value is well-formed UTF-8."""
    try:
        if isinstance(value, bytes):
            value.decode("utf-8")
        else:
            value.encode("utf-8")
    except UnicodeError:
        return False
    return True


def _fnv_add(hash_value: int, data: bytes) -> int:
    for byte in data:
        hash_value = ((hash_value ^ byte) * _FNV_PRIME) & _MASK64
    return hash_value


def label_signature(labels: Mapping[str, str]) -> int:
    """A 64-bit FNV-1a hash of a label set, independent of label order."""
    hash_value = _FNV_OFFSET
    separator = bytes([_SEPARATOR_BYTE])
    for name in sorted(labels):
        hash_value = _fnv_add(hash_value, name.encode("utf-8", "surrogateescape"))
        hash_value = _fnv_add(hash_value, separator)
        hash_value = _fnv_add(
            hash_value, labels[name].encode("utf-8", "surrogateescape")
        )
        hash_value = _fnv_add(hash_value, separator)
    return hash_value


def format_go_float(value: float) -> str:
    """Shortest round-trip rendering in 'g' style with two-digit exponents."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0")
    exponent += len(raw) - len(digits)
    point = len(digits) + exponent
    decimal_exponent = point - 1
    prefix = "-" if sign else ""

    if decimal_exponent < -4 or decimal_exponent >= 6:
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        exp_sign = "-" if decimal_exponent < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(decimal_exponent):02d}"

    if point <= 0:
        body = "0." + "0" * (-point) + digits
    elif point >= len(digits):
        body = digits + "0" * (point - len(digits))
    else:
        body = digits[:point] + "." + digits[point:]
    return prefix + body