"""Device Relay package.

Relays device telemetry and events from a tenant's AMQP 1.0 messaging endpoint
to per-device sink addresses.
"""

__version__ = "1.0.0"
__description__ = "AMQP relay from tenant telemetry/event addresses to per-device sinks"
