# metricfmt

metricfmt writes metric families in the exposition formats that monitoring
systems scrape:

- the flat text format (`text/plain; version=0.0.4`)
- the OpenMetrics text format
- protobuf `MetricFamily` messages, as raw bytes or with length-delimited
  framing, plus the protobuf text and compact-text renderings

It can also read the protobuf forms back. It uses only the standard library.

## Installing

```
pip install metricfmt
```

## Data model

`metricfmt.model` describes what a scrape holds. A `MetricFamily` has a
`name`, optional `help` text, an optional `type` (a `MetricType`) and a list
of `metrics`. When `type` is unset, `metric_type` reports it as a counter.

Each `Metric` has `labels` (a list of `LabelPair`), an optional
`timestamp_ms`, and one value object: `Counter`, `Gauge`, `Untyped`,
`Summary` (with `quantiles`, a list of `Quantile`) or `Histogram` (with
`buckets`, a list of `Bucket`). Counters and buckets may carry an
`Exemplar`, whose timestamp is given in nanoseconds.

`Format` lists the content types of the formats. `Sample` is a plain record
of one flattened data point (labels, value, timestamp in milliseconds).

The module also offers helpers:

- `is_valid_metric_name`, `is_valid_label_name` and `is_valid_label_value`
  check names against the allowed characters and values for valid UTF-8.
- `label_signature` returns a 64-bit FNV-1a hash of a label set that does not
  depend on label order.
- `format_go_float` renders a float in its shortest round-trip form, in "g"
  style with two-digit exponents (`1.7560473e+06`, `NaN`, `+Inf`).

## Text format

```python
import io

from metricfmt.model import Gauge, LabelPair, Metric, MetricFamily, MetricType
from metricfmt.text_create import metric_family_to_text

family = MetricFamily(
    name="queue_depth",
    help="Jobs waiting.",
    type=MetricType.GAUGE,
    metrics=[Metric(labels=[LabelPair("queue", "default")], gauge=Gauge(7.0))],
)
out = io.StringIO()
metric_family_to_text(out, family)
print(out.getvalue())
# # HELP queue_depth Jobs waiting.
# # TYPE queue_depth gauge
# queue_depth{queue="default"} 7
```

`metric_family_to_text` writes to a text or a binary stream and returns the
number of UTF-8 bytes written. Summaries are written as quantile lines plus
`_sum` and `_count`. Histograms are written as `_bucket` lines, with a
`+Inf` bucket added if none is given, followed by `_sum` and `_count`. A
family with no name, with no metrics, of an unknown type, or whose metrics
lack the value its type needs raises `ValueError`. Output written before the
problem stays written.

`escape_string` and `format_float` are the escaping and number rendering that
the writer uses.

## OpenMetrics

```python
import io

from metricfmt.model import Counter, Metric, MetricFamily, MetricType
from metricfmt.openmetrics_create import (
    finalize_openmetrics,
    metric_family_to_openmetrics,
)

family = MetricFamily(
    name="jobs_total",
    help="Jobs done.",
    type=MetricType.COUNTER,
    metrics=[Metric(counter=Counter(3.0))],
)
out = io.StringIO()
metric_family_to_openmetrics(out, family)
finalize_openmetrics(out)
print(out.getvalue())
# # HELP jobs Jobs done.
# # TYPE jobs counter
# jobs_total 3.0
# # EOF
```

Counters are expected to end in `_total`. The suffix is dropped on the HELP
and TYPE lines, and a counter without it is typed `unknown`. Untyped families
are also written as `unknown`. Floats always show a `.` or an exponent
(`format_openmetrics_float`). Timestamps are written in seconds. Exemplars on
counters and buckets are appended after ` # `.

## Protobuf

`metricfmt.wire` handles the protobuf encodings:

- `encode_family` and `decode_family` convert between a `MetricFamily` and
  wire bytes. Unknown fields are skipped, and malformed bytes raise
  `ValueError`.
- `write_delimited` writes a family with a varint length prefix.
  `read_delimited` reads one back, and returns `None` at a clean end of stream.
- `to_text_format` gives the multi-line protobuf text rendering, and
  `to_compact_text` gives the single-line one.

```python
import io

from metricfmt.wire import read_delimited, write_delimited

buf = io.BytesIO()
write_delimited(buf, family)
buf.seek(0)
assert read_delimited(buf) == family
```

## What it does not do

The package does not parse the plain text or OpenMetrics formats. It has no
negotiation of a format from HTTP `Accept` or `Content-Type` headers, no
single encoder or decoder object that dispatches on a `Format`, and nothing
that flattens families into `Sample` records. It is a library only, with no
command-line tool and no HTTP server.