"""Test package for AccountTracker.

Qt's test mode is switched on before any AccountTracker module is imported, so the settings
created at import time live under the test location instead of the user's data directory.
"""
from PySide6 import QtCore

QtCore.QStandardPaths.setTestModeEnabled(True)
