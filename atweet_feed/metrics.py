from __future__ import annotations

from prometheus_client import Counter, Gauge


events_total = Counter(
    "atweet_events_total",
    "Jetstream events received, by decode outcome",
    ["kind"],
)

items_stored_total = Counter(
    "atweet_items_stored_total",
    "Feed items handed to the repository",
)

store_errors_total = Counter(
    "atweet_store_errors_total",
    "Repository writes that failed during ingestion",
)

jetstream_connected = Gauge(
    "atweet_jetstream_connected",
    "Jetstream connection status (1=connected, 0=disconnected)",
)

jetstream_cursor = Gauge(
    "atweet_jetstream_cursor",
    "Latest processed Jetstream cursor (microseconds)",
)

feed_requests_total = Counter(
    "atweet_feed_requests_total",
    "Timeline pages served",
)
