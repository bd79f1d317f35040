"""Energy domain: vocabulary, intent translation, and telemetry aggregation."""
