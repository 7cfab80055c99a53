"""Cross-cutting runtime support: concurrency, logging, telemetry, metrics."""
