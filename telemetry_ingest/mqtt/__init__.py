"""Ingesta MQTT: parsing de topics, validación de payloads y cliente de transporte."""
