"""
Application-facing Qt plumbing.

- :mod:`AccountTracker.ui.actions` – Application-wide signals and utility slots.
"""
