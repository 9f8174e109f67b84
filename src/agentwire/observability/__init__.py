"""Optional OpenTelemetry metrics."""
