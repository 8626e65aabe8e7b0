"""TrustGate - trust telemetry gateway."""
