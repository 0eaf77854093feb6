"""Rendering of metric families in the plain text exposition format."""

from __future__ import annotations

import io
import math
from typing import IO, Iterable, Iterator, Optional

from .model import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    format_go_float,
)

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n"})
_QUOTED_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", '"': '\\"'})

_TYPE_NAMES = {
    MetricType.COUNTER: "counter",
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "untyped",
    MetricType.HISTOGRAM: "histogram",
}


def escape_string(value: str, include_double_quote: bool) -> str:
    """Escape backslashes and newlines, and double quotes if asked to."""
    return value.translate(_QUOTED_ESCAPES if include_double_quote else _ESCAPES)


def format_float(value: float) -> str:
    """Render a sample value as the text format expects it."""
    if value == 1:
        return "1"
    if value == 0:
        return "0"
    if value == -1:
        return "-1"
    return format_go_float(value)


def _describe_type(metric_type: int) -> str:
    try:
        return MetricType(metric_type).name
    except ValueError:
        return str(int(metric_type))


def _write_chunks(out: IO, chunks: Iterable[str]) -> int:
    """Write chunks to a text or binary stream; return UTF-8 bytes written."""
    binary = isinstance(out, (io.RawIOBase, io.BufferedIOBase))
    written = 0
    for chunk in chunks:
        data = chunk.encode("utf-8", "surrogateescape")
        out.write(data if binary else chunk)
        written += len(data)
    return written


def _label_pairs(
    labels: list[LabelPair], extra_name: str, extra_value: float
) -> str:
    if not labels and not extra_name:
        return ""
    parts = [f'{lp.name}="{escape_string(lp.value, True)}"' for lp in labels]
    if extra_name:
        parts.append(f'{extra_name}="{format_float(extra_value)}"')
    return "{" + ",".join(parts) + "}"


def _sample(
    name: str,
    suffix: str,
    metric: Metric,
    extra_name: str,
    extra_value: float,
    value: float,
) -> str:
    line = (
        f"{name}{suffix}{_label_pairs(metric.labels, extra_name, extra_value)}"
        f" {format_float(value)}"
    )
    if metric.timestamp_ms is not None:
        line += f" {metric.timestamp_ms}"
    return line + "\n"


def _or_zero(value: Optional[float]) -> float:
    return 0.0 if value is None else value


def _render_metric(name: str, metric_type: int, metric: Metric) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        if metric.counter is None:
            raise ValueError(f"expected counter in metric {name} {metric!r}")
        yield _sample(name, "", metric, "", 0.0, metric.counter.value)
    elif metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric!r}")
        yield _sample(name, "", metric, "", 0.0, metric.gauge.value)
    elif metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric!r}")
        yield _sample(name, "", metric, "", 0.0, metric.untyped.value)
    elif metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric!r}")
        for q in summary.quantiles:
            yield _sample(name, "", metric, QUANTILE_LABEL, q.quantile, q.value)
        yield _sample(name, "_sum", metric, "", 0.0, _or_zero(summary.sample_sum))
        yield _sample(
            name, "_count", metric, "", 0.0, float(summary.sample_count or 0)
        )
    elif metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric!r}")
        inf_seen = False
        for bucket in histogram.buckets:
            yield _sample(
                name,
                "_bucket",
                metric,
                BUCKET_LABEL,
                bucket.upper_bound,
                float(bucket.cumulative_count),
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        count = float(histogram.sample_count or 0)
        if not inf_seen:
            yield _sample(name, "_bucket", metric, BUCKET_LABEL, math.inf, count)
        yield _sample(
            name, "_sum", metric, "", 0.0, _or_zero(histogram.sample_sum)
        )
        yield _sample(name, "_count", metric, "", 0.0, count)
    else:
        raise ValueError(f"unexpected type in metric {name} {metric!r}")


def _render_family(family: MetricFamily) -> Iterator[str]:
    if not family.metrics:
        raise ValueError(f"MetricFamily has no metrics: {family!r}")
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family!r}")
    if family.help is not None:
        yield f"# HELP {name} {escape_string(family.help, False)}\n"
    yield f"# TYPE {name}"
    metric_type = family.metric_type
    type_name = _TYPE_NAMES.get(metric_type)
    if type_name is None:
        raise ValueError(f"unknown metric type {_describe_type(metric_type)}")
    yield f" {type_name}\n"
    for metric in family.metrics:
        yield from _render_metric(name, metric_type, metric)


def metric_family_to_text(out: IO, family: MetricFamily) -> int:
    """Write family to out in text format and return the bytes written.

    The output keeps the input order and performs no sanity checks beyond
    the ones the format needs. Raises ValueError on malformed input, after
    writing whatever preceded the problem.
    """
    return _write_chunks(out, _render_family(family))