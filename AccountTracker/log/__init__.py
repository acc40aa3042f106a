"""
Logging subsystem.

Modules:

- :mod:`AccountTracker.log.log` – Root logger setup, in-memory log tank, and the Qt message bridge.
"""
