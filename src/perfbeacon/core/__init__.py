"""Framework-independent telemetry core."""
