"""Modbus to MQTT gateway core: configuration, register polling, scheduling and value conversion."""

__version__ = "1.0.0"