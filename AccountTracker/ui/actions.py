"""Application-wide Qt signals and utility slots for AccountTracker.

This module provides:
    - open_document slot: opens the active Google Sheets document in the browser.
    - Signals: custom Qt signals for authentication, document lifecycle, configuration changes,
      errors, and log display.
"""
import logging

from PySide6 import QtCore, QtGui

DOCUMENT_URL = 'https://docs.google.com/spreadsheets/d/{id}/edit'


def document_url(document_id: str) -> str:
    """Return the browser URL of a document."""
    return DOCUMENT_URL.format(id=document_id)


@QtCore.Slot()
def open_document() -> None:
    """
    Opens the last used document in the default browser.
    """
    from ..settings import lib

    document_id = lib.settings.last_document_id
    if not document_id:
        logging.warning('No document has been opened yet; nothing to show.')
        return

    url = document_url(document_id)
    logging.debug(f'Opening document: {url}')
    QtGui.QDesktopServices.openUrl(QtCore.QUrl(url))


class Signals(QtCore.QObject):
    """Centralized Qt signals for authentication, document, config, and log events."""
    authChanged = QtCore.Signal(bool)
    authenticationRequested = QtCore.Signal()

    documentChanged = QtCore.Signal(str, str)  # id, title
    dataLoaded = QtCore.Signal()

    configSectionChanged = QtCore.Signal(str)
    metadataChanged = QtCore.Signal(str, object)

    openDocument = QtCore.Signal()
    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.openDocument.connect(open_document)


signals = Signals()
