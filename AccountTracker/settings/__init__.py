"""
Settings package: configuration API and locale formatting.

This package provides:

- :mod:`AccountTracker.settings.lib` – Core settings management and schema validation.
- :mod:`AccountTracker.settings.locale` – Localization utilities for formatting amounts and dates.
"""
