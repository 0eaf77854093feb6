import io
import math

import pytest

from metricfmt.model import (
    Bucket,
    Counter,
    Exemplar,
    Gauge,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Quantile,
    Summary,
    Untyped,
    is_valid_label_value,
)
from metricfmt.wire import (
    decode_family,
    encode_family,
    read_delimited,
    to_compact_text,
    to_text_format,
    write_delimited,
)

COUNTER_STREAM = (
    b"\x8f\x01\n\rrequest_count\x12\x12Number of requests\x18\x00\"0\n#\n"
    b"\x0fsome_label_name\x12\x10some_label_value\x1a\t\t\x00\x00\x00\x00\x00"
    b"\x00E\xc0\"6\n)\n\x12another_label_name\x12\x13another_label_value\x1a"
    b"\t\t\x00\x00\x00\x00\x00\x00U@"
)

SUMMARY_STREAM = (
    b"\xb9\x01\n\rrequest_count\x12\x12Number of requests\x18\x02\"O\n#\n"
    b"\x0fsome_label_name\x12\x10some_label_value\"(\x1a\x12\t\xaeG\xe1z\x14"
    b"\xae\xef?\x11\x00\x00\x00\x00\x00\x00E\xc0\x1a\x12\t+\x87\x16\xd9\xce"
    b"\xf7\xef?\x11\x00\x00\x00\x00\x00\x00U\xc0\"A\n)\n\x12another_label_name"
    b"\x12\x13another_label_value\"\x14\x1a\x12\t\x00\x00\x00\x00\x00\x00\xe0?"
    b"\x11\x00\x00\x00\x00\x00\x00$@"
)

HISTOGRAM_STREAM = (
    b"\x8d\x01\n\x1drequest_duration_microseconds\x12\x15The response latency."
    b"\x18\x04\"S:Q\b\x85\x15\x11\xcd\xcc\xccL\x8f\xcb:A\x1a\v\b{\x11\x00\x00"
    b"\x00\x00\x00\x00Y@\x1a\x0c\b\x9c\x03\x11\x00\x00\x00\x00\x00\x00^@\x1a"
    b"\x0c\b\xd0\x04\x11\x00\x00\x00\x00\x00\x00b@\x1a\x0c\b\xf4\v\x11\x9a\x99"
    b"\x99\x99\x99\x99e@\x1a\x0c\b\x85\x15\x11\x00\x00\x00\x00\x00\x00\xf0\x7f"
)

UNTYPED_STREAM = (
    b"\x1c\n\rrequest_count\"\v\x1a\t\t\x00\x00\x00\x00\x00\x00\xf0?"
)


def _rich_family():
    return MetricFamily(
        name="rich_metric",
        help="Help with ünïcode\nand newline",
        type=MetricType.HISTOGRAM,
        metrics=[
            Metric(
                labels=[LabelPair("a", "x"), LabelPair("b", 'y"z')],
                histogram=Histogram(
                    sample_count=17,
                    sample_sum=-3.5,
                    buckets=[
                        Bucket(
                            cumulative_count=4,
                            upper_bound=0.25,
                            exemplar=Exemplar(
                                labels=[LabelPair("trace", "abc")],
                                value=0.2,
                                timestamp_ns=12345600000000000,
                            ),
                        ),
                        Bucket(cumulative_count=17, upper_bound=math.inf),
                    ],
                ),
                timestamp_ms=-2,
            ),
            Metric(
                histogram=Histogram(
                    buckets=[
                        Bucket(
                            cumulative_count=1,
                            upper_bound=1.0,
                            exemplar=Exemplar(value=1.5, timestamp_ns=-1500000000),
                        )
                    ]
                )
            ),
        ],
    )


def test_read_delimited_counter_vector():
    stream = io.BytesIO(COUNTER_STREAM)
    family = read_delimited(stream)
    assert family.name == "request_count"
    assert family.help == "Number of requests"
    assert family.type == MetricType.COUNTER
    assert [m.labels for m in family.metrics] == [
        [LabelPair("some_label_name", "some_label_value")],
        [LabelPair("another_label_name", "another_label_value")],
    ]
    assert [m.counter.value for m in family.metrics] == [-42.0, 84.0]
    assert read_delimited(stream) is None


@pytest.mark.parametrize(
    "stream_bytes", [COUNTER_STREAM, SUMMARY_STREAM, HISTOGRAM_STREAM, UNTYPED_STREAM]
)
def test_encode_reproduces_wire_bytes(stream_bytes):
    family = read_delimited(io.BytesIO(stream_bytes))
    out = io.BytesIO()
    written = write_delimited(out, family)
    assert out.getvalue() == stream_bytes
    assert written == len(stream_bytes)


def test_summary_vector():
    family = read_delimited(io.BytesIO(SUMMARY_STREAM))
    assert family.type == MetricType.SUMMARY
    first, second = family.metrics
    assert first.summary.quantiles == [Quantile(0.99, -42.0), Quantile(0.999, -84.0)]
    assert first.summary.sample_count is None
    assert first.summary.sample_sum is None
    assert second.summary.quantiles == [Quantile(0.5, 10.0)]


def test_histogram_vector():
    family = read_delimited(io.BytesIO(HISTOGRAM_STREAM))
    assert family.name == "request_duration_microseconds"
    assert family.help == "The response latency."
    assert family.type == MetricType.HISTOGRAM
    (metric,) = family.metrics
    histogram = metric.histogram
    assert histogram.sample_count == 2693
    assert histogram.sample_sum == 1756047.3
    assert [(b.cumulative_count, b.upper_bound) for b in histogram.buckets] == [
        (123, 100.0),
        (412, 120.0),
        (592, 144.0),
        (1524, 172.8),
        (2693, math.inf),
    ]


def test_unset_type_vector():
    family = read_delimited(io.BytesIO(UNTYPED_STREAM))
    assert family.type is None
    assert family.metric_type == MetricType.COUNTER
    assert family.metrics == [Metric(counter=Counter(1.0))]
    built = MetricFamily(name="request_count", metrics=[Metric(counter=Counter(1.0))])
    assert encode_family(built) == UNTYPED_STREAM[1:]


def test_round_trip_rich_family():
    family = _rich_family()
    assert decode_family(encode_family(family)) == family


def test_round_trip_all_value_kinds():
    family = MetricFamily(
        name="mixed",
        type=MetricType.GAUGE,
        metrics=[
            Metric(gauge=Gauge(-0.5), timestamp_ms=1234567890),
            Metric(untyped=Untyped(3.0)),
            Metric(
                counter=Counter(7.0, exemplar=Exemplar([LabelPair("k", "v")], 2.0))
            ),
            Metric(summary=Summary(sample_count=3, sample_sum=1.0)),
        ],
    )
    assert decode_family(encode_family(family)) == family


def test_stream_of_several_families():
    families = [_rich_family(), read_delimited(io.BytesIO(COUNTER_STREAM))]
    out = io.BytesIO()
    for family in families:
        write_delimited(out, family)
    stream = io.BytesIO(out.getvalue())
    decoded = []
    while (family := read_delimited(stream)) is not None:
        decoded.append(family)
    assert decoded == families


@pytest.mark.parametrize("extra", [b"\x78\x05", b"\x7a\x02ab", b"\x7d\x00\x00\x00\x00"])
def test_unknown_fields_are_skipped(extra):
    data = encode_family(_rich_family())
    assert decode_family(data + extra) == decode_family(data)


def test_truncated_message_raises():
    data = encode_family(_rich_family())
    with pytest.raises(ValueError):
        decode_family(data[:-3])


def test_truncated_stream_raises():
    with pytest.raises(ValueError):
        read_delimited(io.BytesIO(COUNTER_STREAM[:40]))
    with pytest.raises(ValueError):
        read_delimited(io.BytesIO(b"\x8f"))


def test_empty_stream_yields_none():
    assert read_delimited(io.BytesIO(b"")) is None


def test_unsupported_wire_type_raises():
    with pytest.raises(ValueError):
        decode_family(b"\x0b")


def test_invalid_utf8_label_value_is_preserved():
    family = MetricFamily(
        name="m",
        metrics=[Metric(labels=[LabelPair("l", "\udcbd")], untyped=Untyped(1.0))],
    )
    decoded = decode_family(encode_family(family))
    value = decoded.metrics[0].labels[0].value
    assert value == "\udcbd"
    assert not is_valid_label_value(value)


def test_text_format():
    family = MetricFamily(
        name="foo_metric",
        type=MetricType.UNTYPED,
        metrics=[Metric(untyped=Untyped(1.234))],
    )
    assert to_text_format(family) == (
        'name: "foo_metric"\n'
        "type: UNTYPED\n"
        "metric: <\n"
        "  untyped: <\n"
        "    value: 1.234\n"
        "  >\n"
        ">\n"
    )


def test_compact_text():
    family = MetricFamily(
        name="foo_metric",
        type=MetricType.UNTYPED,
        metrics=[Metric(untyped=Untyped(1.234))],
    )
    assert to_compact_text(family) == (
        'name:"foo_metric" type:UNTYPED metric:{untyped:{value:1.234}}'
    )


def test_text_renderings_have_balanced_nesting():
    family = _rich_family()
    text = to_text_format(family)
    assert text.count("<\n") == text.count(">\n")
    assert text.endswith("\n")
    compact = to_compact_text(family)
    assert compact.count("{") == compact.count("}")
    assert "\n" not in compact