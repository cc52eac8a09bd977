"""Sensor dataset ingestion into IoTDB and a WebSocket stream over the stored series."""

__version__ = "0.1.0"
