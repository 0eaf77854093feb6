"""Write metric families as text and OpenMetrics, and encode and decode them as protobuf."""

__version__ = "0.1.0"