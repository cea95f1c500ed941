"""Walk-in queue for a multi-department service counter (MQTT-based).

Entities arrive, receive a ticket, are ordered by urgency and arrival time,
and are dispatched one at a time per department:
- a Queue Service owning the authoritative per-department state
- registration desks and staff consoles talking to it over MQTT
- display boards following the per-department and global event topics
- an optional walk-in generator + simulated counters for load testing

See README for how to run.
"""
