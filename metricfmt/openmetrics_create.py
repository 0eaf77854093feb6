"""Rendering of metric families in the OpenMetrics text format."""

from __future__ import annotations

import math
from typing import IO, Iterator, Optional

from .model import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    Exemplar,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    format_go_float,
)
from .text_create import _write_chunks, escape_string

_EOF_LINE = "# EOF\n"

_TYPE_NAMES = {
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "unknown",
    MetricType.HISTOGRAM: "histogram",
}


def format_openmetrics_float(value: float) -> str:
    """Render a float, appending ".0" when it has neither "." nor "e"."""
    if value == 1:
        return "1.0"
    if value == 0:
        return "0.0"
    if value == -1:
        return "-1.0"
    text = format_go_float(value)
    if math.isnan(value) or math.isinf(value):
        return text
    if "e" not in text and "." not in text:
        text += ".0"
    return text


def _describe_type(metric_type: int) -> str:
    try:
        return MetricType(metric_type).name
    except ValueError:
        return str(int(metric_type))


def _label_pairs(
    labels: list[LabelPair], extra_name: str, extra_value: float
) -> str:
    if not labels and not extra_name:
        return ""
    parts = [f'{lp.name}="{escape_string(lp.value, True)}"' for lp in labels]
    if extra_name:
        parts.append(f'{extra_name}="{format_openmetrics_float(extra_value)}"')
    return "{" + ",".join(parts) + "}"


def _exemplar(exemplar: Exemplar) -> str:
    text = f" # {_label_pairs(exemplar.labels, '', 0.0)} "
    text += format_openmetrics_float(exemplar.value)
    if exemplar.timestamp_ns is not None:
        text += " " + format_openmetrics_float(exemplar.timestamp_ns / 1e9)
    return text


def _sample(
    name: str,
    suffix: str,
    metric: Metric,
    extra_name: str = "",
    extra_value: float = 0.0,
    *,
    float_value: float = 0.0,
    int_value: Optional[int] = None,
    exemplar: Optional[Exemplar] = None,
) -> str:
    line = f"{name}{suffix}{_label_pairs(metric.labels, extra_name, extra_value)} "
    if int_value is not None:
        line += str(int_value)
    else:
        line += format_openmetrics_float(float_value)
    if metric.timestamp_ms is not None:
        line += " " + format_openmetrics_float(metric.timestamp_ms / 1000)
    if exemplar is not None:
        line += _exemplar(exemplar)
    return line + "\n"


def _render_metric(name: str, metric_type: int, metric: Metric) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        if metric.counter is None:
            raise ValueError(f"expected counter in metric {name} {metric!r}")
        # The name either ends in _total or the type was rendered as unknown,
        # so no suffix is added here.
        yield _sample(
            name,
            "",
            metric,
            float_value=metric.counter.value,
            exemplar=metric.counter.exemplar,
        )
    elif metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric!r}")
        yield _sample(name, "", metric, float_value=metric.gauge.value)
    elif metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric!r}")
        yield _sample(name, "", metric, float_value=metric.untyped.value)
    elif metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric!r}")
        for q in summary.quantiles:
            yield _sample(
                name, "", metric, QUANTILE_LABEL, q.quantile, float_value=q.value
            )
        yield _sample(
            name, "_sum", metric, float_value=summary.sample_sum or 0.0
        )
        yield _sample(
            name, "_count", metric, int_value=summary.sample_count or 0
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
                int_value=bucket.cumulative_count,
                exemplar=bucket.exemplar,
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        count = histogram.sample_count or 0
        if not inf_seen:
            yield _sample(
                name, "_bucket", metric, BUCKET_LABEL, math.inf, int_value=count
            )
        yield _sample(
            name, "_sum", metric, float_value=histogram.sample_sum or 0.0
        )
        yield _sample(name, "_count", metric, int_value=count)
    else:
        raise ValueError(f"unexpected type in metric {name} {metric!r}")


def _render_family(family: MetricFamily) -> Iterator[str]:
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family!r}")
    metric_type = family.metric_type
    short_name = name
    if metric_type == MetricType.COUNTER and name.endswith("_total"):
        short_name = name[:-6]

    if family.help is not None:
        yield f"# HELP {short_name} {escape_string(family.help, True)}\n"
    yield f"# TYPE {short_name}"
    if metric_type == MetricType.COUNTER:
        type_name = "counter" if name.endswith("_total") else "unknown"
    else:
        type_name = _TYPE_NAMES.get(metric_type)
        if type_name is None:
            raise ValueError(f"unknown metric type {_describe_type(metric_type)}")
    yield f" {type_name}\n"

    for metric in family.metrics:
        yield from _render_metric(name, metric_type, metric)


def metric_family_to_openmetrics(out: IO, family: MetricFamily) -> int:
    """Write family to out in OpenMetrics format and return the bytes written.

    Counters are expected to end in "_total"; the suffix is dropped from the
    HELP and TYPE lines, and a counter without it is typed "unknown". The
    closing "# EOF" line is left to finalize_openmetrics. Raises ValueError
    on malformed input, after writing whatever preceded the problem.
    """
    return _write_chunks(out, _render_family(family))


def finalize_openmetrics(out: IO) -> int:
    """Write the closing "# EOF" line and return the bytes written."""
    return _write_chunks(out, [_EOF_LINE])