"""Protocol buffer encodings of metric families: binary and text forms."""

from __future__ import annotations

import math
import struct
from typing import IO, Callable, Iterator, Optional, Union

from .model import (
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
    format_go_float,
)

_VARINT = 0
_FIXED64 = 1
_LEN = 2
_FIXED32 = 5

_MASK64 = (1 << 64) - 1
_MAX_VARINT_BYTES = 10
_NANOS_PER_SECOND = 10**9

_Field = tuple  # (name, rendered scalar or list of nested fields)


# ---------------------------------------------------------------------------
# Binary encoding


def _varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _tag(field_number: int, wire_type: int) -> bytes:
    return _varint(field_number << 3 | wire_type)


def _uint_field(field_number: int, value: int) -> bytes:
    return _tag(field_number, _VARINT) + _varint(int(value))


def _double_field(field_number: int, value: float) -> bytes:
    return _tag(field_number, _FIXED64) + struct.pack("<d", value)


def _bytes_field(field_number: int, payload: bytes) -> bytes:
    return _tag(field_number, _LEN) + _varint(len(payload)) + payload


def _str_field(field_number: int, text: str) -> bytes:
    return _bytes_field(field_number, text.encode("utf-8", "surrogateescape"))


def _enc_label(label: LabelPair) -> bytes:
    return _str_field(1, label.name) + _str_field(2, label.value)


def _enc_timestamp(timestamp_ns: int) -> bytes:
    seconds, nanos = divmod(timestamp_ns, _NANOS_PER_SECOND)
    payload = b""
    if seconds:
        payload += _uint_field(1, seconds)
    if nanos:
        payload += _uint_field(2, nanos)
    return payload


def _enc_exemplar(exemplar: Exemplar) -> bytes:
    parts = [_bytes_field(1, _enc_label(lp)) for lp in exemplar.labels]
    parts.append(_double_field(2, exemplar.value))
    if exemplar.timestamp_ns is not None:
        parts.append(_bytes_field(3, _enc_timestamp(exemplar.timestamp_ns)))
    return b"".join(parts)


def _enc_counter(counter: Counter) -> bytes:
    payload = _double_field(1, counter.value)
    if counter.exemplar is not None:
        payload += _bytes_field(2, _enc_exemplar(counter.exemplar))
    return payload


def _enc_summary(summary: Summary) -> bytes:
    parts = []
    if summary.sample_count is not None:
        parts.append(_uint_field(1, summary.sample_count))
    if summary.sample_sum is not None:
        parts.append(_double_field(2, summary.sample_sum))
    for q in summary.quantiles:
        parts.append(
            _bytes_field(3, _double_field(1, q.quantile) + _double_field(2, q.value))
        )
    return b"".join(parts)


def _enc_bucket(bucket: Bucket) -> bytes:
    payload = _uint_field(1, bucket.cumulative_count) + _double_field(
        2, bucket.upper_bound
    )
    if bucket.exemplar is not None:
        payload += _bytes_field(3, _enc_exemplar(bucket.exemplar))
    return payload


def _enc_histogram(histogram: Histogram) -> bytes:
    parts = []
    if histogram.sample_count is not None:
        parts.append(_uint_field(1, histogram.sample_count))
    if histogram.sample_sum is not None:
        parts.append(_double_field(2, histogram.sample_sum))
    parts.extend(_bytes_field(3, _enc_bucket(b)) for b in histogram.buckets)
    return b"".join(parts)


def _enc_metric(metric: Metric) -> bytes:
    parts = [_bytes_field(1, _enc_label(lp)) for lp in metric.labels]
    if metric.gauge is not None:
        parts.append(_bytes_field(2, _double_field(1, metric.gauge.value)))
    if metric.counter is not None:
        parts.append(_bytes_field(3, _enc_counter(metric.counter)))
    if metric.summary is not None:
        parts.append(_bytes_field(4, _enc_summary(metric.summary)))
    if metric.untyped is not None:
        parts.append(_bytes_field(5, _double_field(1, metric.untyped.value)))
    if metric.timestamp_ms is not None:
        parts.append(_uint_field(6, metric.timestamp_ms))
    if metric.histogram is not None:
        parts.append(_bytes_field(7, _enc_histogram(metric.histogram)))
    return b"".join(parts)


def encode_family(family: MetricFamily) -> bytes:
    """Serialize a metric family to protocol buffer wire bytes."""
    parts = []
    if family.name:
        parts.append(_str_field(1, family.name))
    if family.help is not None:
        parts.append(_str_field(2, family.help))
    if family.type is not None:
        parts.append(_uint_field(3, int(family.type)))
    parts.extend(_bytes_field(4, _enc_metric(m)) for m in family.metrics)
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Binary decoding


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for index in range(_MAX_VARINT_BYTES):
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return result & _MASK64, pos
    raise ValueError("varint overflows 64 bits")


def _iter_fields(data: bytes) -> Iterator[tuple[int, int, Union[int, bytes]]]:
    pos = 0
    size = len(data)
    while pos < size:
        key, pos = _read_varint(data, pos)
        field_number, wire_type = key >> 3, key & 7
        if field_number == 0:
            raise ValueError("invalid field number 0")
        if wire_type == _VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type in (_FIXED64, _FIXED32):
            end = pos + (8 if wire_type == _FIXED64 else 4)
            if end > size:
                raise ValueError("truncated fixed-width field")
            value, pos = bytes(data[pos:end]), end
        elif wire_type == _LEN:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > size:
                raise ValueError("truncated length-delimited field")
            value, pos = bytes(data[pos:end]), end
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield field_number, wire_type, value


def _as_double(raw: bytes) -> float:
    return struct.unpack("<d", raw)[0]


def _as_int64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _as_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def _as_text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _parse_label(data: bytes, label: LabelPair) -> LabelPair:
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _LEN:
            label.name = _as_text(value)
        elif number == 2 and wire_type == _LEN:
            label.value = _as_text(value)
    return label


def _parse_timestamp(data: bytes, base_ns: Optional[int]) -> int:
    seconds, nanos = divmod(base_ns or 0, _NANOS_PER_SECOND)
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _VARINT:
            seconds = _as_int64(value)
        elif number == 2 and wire_type == _VARINT:
            nanos = _as_int32(value)
    return seconds * _NANOS_PER_SECOND + nanos


def _parse_exemplar(data: bytes, exemplar: Exemplar) -> Exemplar:
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _LEN:
            exemplar.labels.append(_parse_label(value, LabelPair()))
        elif number == 2 and wire_type == _FIXED64:
            exemplar.value = _as_double(value)
        elif number == 3 and wire_type == _LEN:
            exemplar.timestamp_ns = _parse_timestamp(value, exemplar.timestamp_ns)
    return exemplar


def _parse_single_value(data: bytes, target):
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _FIXED64:
            target.value = _as_double(value)
    return target


def _parse_counter(data: bytes, counter: Counter) -> Counter:
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _FIXED64:
            counter.value = _as_double(value)
        elif number == 2 and wire_type == _LEN:
            counter.exemplar = _parse_exemplar(value, counter.exemplar or Exemplar())
    return counter


def _parse_quantile(data: bytes) -> Quantile:
    quantile = Quantile()
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _FIXED64:
            quantile.quantile = _as_double(value)
        elif number == 2 and wire_type == _FIXED64:
            quantile.value = _as_double(value)
    return quantile


def _parse_summary(data: bytes, summary: Summary) -> Summary:
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _VARINT:
            summary.sample_count = value
        elif number == 2 and wire_type == _FIXED64:
            summary.sample_sum = _as_double(value)
        elif number == 3 and wire_type == _LEN:
            summary.quantiles.append(_parse_quantile(value))
    return summary


def _parse_bucket(data: bytes) -> Bucket:
    bucket = Bucket()
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _VARINT:
            bucket.cumulative_count = value
        elif number == 2 and wire_type == _FIXED64:
            bucket.upper_bound = _as_double(value)
        elif number == 3 and wire_type == _LEN:
            bucket.exemplar = _parse_exemplar(value, bucket.exemplar or Exemplar())
    return bucket


def _parse_histogram(data: bytes, histogram: Histogram) -> Histogram:
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _VARINT:
            histogram.sample_count = value
        elif number == 2 and wire_type == _FIXED64:
            histogram.sample_sum = _as_double(value)
        elif number == 3 and wire_type == _LEN:
            histogram.buckets.append(_parse_bucket(value))
    return histogram


def _parse_metric(data: bytes) -> Metric:
    metric = Metric()
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _LEN:
            metric.labels.append(_parse_label(value, LabelPair()))
        elif number == 2 and wire_type == _LEN:
            metric.gauge = _parse_single_value(value, metric.gauge or Gauge())
        elif number == 3 and wire_type == _LEN:
            metric.counter = _parse_counter(value, metric.counter or Counter())
        elif number == 4 and wire_type == _LEN:
            metric.summary = _parse_summary(value, metric.summary or Summary())
        elif number == 5 and wire_type == _LEN:
            metric.untyped = _parse_single_value(value, metric.untyped or Untyped())
        elif number == 6 and wire_type == _VARINT:
            metric.timestamp_ms = _as_int64(value)
        elif number == 7 and wire_type == _LEN:
            metric.histogram = _parse_histogram(
                value, metric.histogram or Histogram()
            )
    return metric


def _metric_type(value: int) -> int:
    number = _as_int32(value)
    try:
        return MetricType(number)
    except ValueError:
        return number


def decode_family(data: bytes) -> MetricFamily:
    """Parse protocol buffer wire bytes into a metric family.

    Unknown fields are skipped; malformed input raises ValueError.
    """
    family = MetricFamily()
    for number, wire_type, value in _iter_fields(data):
        if number == 1 and wire_type == _LEN:
            family.name = _as_text(value)
        elif number == 2 and wire_type == _LEN:
            family.help = _as_text(value)
        elif number == 3 and wire_type == _VARINT:
            family.type = _metric_type(value)
        elif number == 4 and wire_type == _LEN:
            family.metrics.append(_parse_metric(value))
    return family


# ---------------------------------------------------------------------------
# Length-delimited streams


def _read_length(stream: IO[bytes]) -> Optional[int]:
    length = 0
    for index in range(_MAX_VARINT_BYTES):
        chunk = stream.read(1)
        if not chunk:
            if index == 0:
                return None
            raise ValueError("unexpected end of stream in length prefix")
        byte = chunk[0]
        length |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return length
    raise ValueError("length prefix overflows 64 bits")


def _read_exact(stream: IO[bytes], size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise ValueError("unexpected end of stream in message body")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_delimited(stream: IO[bytes]) -> Optional[MetricFamily]:
    """Read one length-prefixed family; return None at a clean end of stream."""
    length = _read_length(stream)
    if length is None:
        return None
    return decode_family(_read_exact(stream, length))


def write_delimited(stream: IO[bytes], family: MetricFamily) -> int:
    """Write family with a varint length prefix; return the bytes written."""
    payload = encode_family(family)
    data = _varint(len(payload)) + payload
    stream.write(data)
    return len(data)


# ---------------------------------------------------------------------------
# Text renderings

_SIMPLE_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    '"': '\\"',
    "\\": "\\\\",
}


def _quote_bytes(text: str) -> str:
    out = []
    for byte in text.encode("utf-8", "surrogateescape"):
        char = chr(byte)
        if char in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[char])
        elif 0x20 <= byte < 0x7F:
            out.append(char)
        else:
            out.append(f"\\{byte:03o}")
    return '"' + "".join(out) + '"'


def _quote_unicode(text: str) -> str:
    out = []
    for char in text:
        if char in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[char])
        elif "\udc80" <= char <= "\udcff":
            out.append(f"\\x{ord(char) - 0xDC00:02x}")
        elif char < " " or char == "\x7f":
            out.append(f"\\x{ord(char):02x}")
        else:
            out.append(char)
    return '"' + "".join(out) + '"'


def _proto_float(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return format_go_float(value)


def _enum_name(value: int) -> str:
    try:
        return MetricType(value).name
    except ValueError:
        return str(int(value))


def _label_fields(label: LabelPair, quote: Callable[[str], str]) -> list:
    return [("name", quote(label.name)), ("value", quote(label.value))]


def _timestamp_fields(timestamp_ns: int) -> list:
    seconds, nanos = divmod(timestamp_ns, _NANOS_PER_SECOND)
    fields = []
    if seconds:
        fields.append(("seconds", str(seconds)))
    if nanos:
        fields.append(("nanos", str(nanos)))
    return fields


def _exemplar_fields(exemplar: Exemplar, quote: Callable[[str], str]) -> list:
    fields = [("label", _label_fields(lp, quote)) for lp in exemplar.labels]
    fields.append(("value", _proto_float(exemplar.value)))
    if exemplar.timestamp_ns is not None:
        fields.append(("timestamp", _timestamp_fields(exemplar.timestamp_ns)))
    return fields


def _summary_fields(summary: Summary) -> list:
    fields = []
    if summary.sample_count is not None:
        fields.append(("sample_count", str(summary.sample_count)))
    if summary.sample_sum is not None:
        fields.append(("sample_sum", _proto_float(summary.sample_sum)))
    for q in summary.quantiles:
        fields.append(
            (
                "quantile",
                [
                    ("quantile", _proto_float(q.quantile)),
                    ("value", _proto_float(q.value)),
                ],
            )
        )
    return fields


def _histogram_fields(histogram: Histogram, quote: Callable[[str], str]) -> list:
    fields = []
    if histogram.sample_count is not None:
        fields.append(("sample_count", str(histogram.sample_count)))
    if histogram.sample_sum is not None:
        fields.append(("sample_sum", _proto_float(histogram.sample_sum)))
    for bucket in histogram.buckets:
        bucket_fields = [
            ("cumulative_count", str(bucket.cumulative_count)),
            ("upper_bound", _proto_float(bucket.upper_bound)),
        ]
        if bucket.exemplar is not None:
            bucket_fields.append(("exemplar", _exemplar_fields(bucket.exemplar, quote)))
        fields.append(("bucket", bucket_fields))
    return fields


def _metric_fields(metric: Metric, quote: Callable[[str], str]) -> list:
    fields = [("label", _label_fields(lp, quote)) for lp in metric.labels]
    if metric.gauge is not None:
        fields.append(("gauge", [("value", _proto_float(metric.gauge.value))]))
    if metric.counter is not None:
        counter_fields = [("value", _proto_float(metric.counter.value))]
        if metric.counter.exemplar is not None:
            counter_fields.append(
                ("exemplar", _exemplar_fields(metric.counter.exemplar, quote))
            )
        fields.append(("counter", counter_fields))
    if metric.summary is not None:
        fields.append(("summary", _summary_fields(metric.summary)))
    if metric.untyped is not None:
        fields.append(("untyped", [("value", _proto_float(metric.untyped.value))]))
    if metric.timestamp_ms is not None:
        fields.append(("timestamp_ms", str(metric.timestamp_ms)))
    if metric.histogram is not None:
        fields.append(("histogram", _histogram_fields(metric.histogram, quote)))
    return fields


def _family_fields(family: MetricFamily, quote: Callable[[str], str]) -> list:
    fields = []
    if family.name:
        fields.append(("name", quote(family.name)))
    if family.help is not None:
        fields.append(("help", quote(family.help)))
    if family.type is not None:
        fields.append(("type", _enum_name(family.type)))
    fields.extend(("metric", _metric_fields(m, quote)) for m in family.metrics)
    return fields


def _expanded_lines(fields: list, depth: int) -> Iterator[str]:
    pad = "  " * depth
    for name, value in fields:
        if isinstance(value, list):
            yield f"{pad}{name}: <"
            yield from _expanded_lines(value, depth + 1)
            yield f"{pad}>"
        else:
            yield f"{pad}{name}: {value}"


def _compact(fields: list) -> str:
    return " ".join(
        f"{name}:{{{_compact(value)}}}" if isinstance(value, list) else f"{name}:{value}"
        for name, value in fields
    )


def to_text_format(family: MetricFamily) -> str:
    """Render family in the multi-line protocol buffer text format."""
    lines = list(_expanded_lines(_family_fields(family, _quote_bytes), 0))
    return "".join(line + "\n" for line in lines)


def to_compact_text(family: MetricFamily) -> str:
    """Render family in the single-line protocol buffer text format."""
    return _compact(_family_fields(family, _quote_unicode))