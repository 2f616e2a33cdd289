"""Smart Feeder backend: dashboard API, command relay and alerting."""

__version__ = "0.1.0"
