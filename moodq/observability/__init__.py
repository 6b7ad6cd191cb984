"""Logging, telemetry counters and structured stage events."""
