"""MQTT transport for legacy Saturn printers."""
