"""
AccountTracker: personal account register that keeps its data in a Google Sheets document.

This package provides:

- :mod:`AccountTracker.core` – Data model, reducer-based state store, Google Sheets mapping and sync,
  autosave tracking, statement reconciliation, and bulk import/export.
- :mod:`AccountTracker.settings` – Settings management, schema validation, and locale-aware formatting.
- :mod:`AccountTracker.status` – Status codes and the exceptions raised by the core services.
- :mod:`AccountTracker.log` – Logging setup with an in-memory log tank.

Use :class:`AccountTracker.core.context.AppContext` to wire the services together.
"""
import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('AccountTracker requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'AccountTracker: personal account register backed by a Google Sheets document.'

from .log import log

log.setup_logging()
