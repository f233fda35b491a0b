"""
Meter Worker Agent — MQTT worker for the meter coordinator.

Connects to the coordinator, keeps the hot-swappable logic module in sync with the
coordinator's version, and executes dispatched tasks against it.
"""
