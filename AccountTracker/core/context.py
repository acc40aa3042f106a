"""The top-level application context.

:class:`AppContext` owns the autosave tracker, the remote store client and the state store,
and wires them to authentication changes and application shutdown. There is one context per
running application; create it after the Qt application and call :meth:`AppContext.init`.

"""
import logging
from typing import Any, Callable, Optional

from PySide6 import QtCore

from .auth import auth_manager
from .autosave import AutoSaveTracker
from .service import SheetsClient
from .store import AppStore
from ..settings import lib
from ..ui.actions import signals

DocumentPicker = Callable[[], Optional[str]]


class AppContext(QtCore.QObject):
    """Owns the application's long-lived services.

    Args:
        client: The remote store client. Defaults to a :class:`SheetsClient`.
        tracker (AutoSaveTracker, optional): Defaults to a tracker configured from settings.
        auth: The credential provider. Defaults to the shared :data:`auth_manager`.
    """

    def __init__(self, client: Any = None, tracker: Optional[AutoSaveTracker] = None, auth: Any = None,
                 parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)
        self.auth = auth or auth_manager
        self.client = client or SheetsClient()
        self.tracker = tracker or AutoSaveTracker(parent=self)
        self.store = AppStore(self.client, self.tracker, parent=self)
        self._initialized = False

    def init(self) -> None:
        """Start autosaving, follow authentication changes and reopen the last document."""
        if self._initialized:
            return
        self.tracker.init(self.store.write)
        signals.authChanged.connect(self.on_auth_changed)
        signals.configSectionChanged.connect(self.on_config_changed)
        self._initialized = True

        signed_in = self.auth.is_signed_in()
        self.store.set_authenticated(signed_in)
        if signed_in and lib.settings.last_document_id:
            self.store.load(lib.settings.last_document_id)

    def dispose(self) -> None:
        """Flush unsaved changes and release every connection."""
        if not self._initialized:
            return
        self.tracker.flush_on_teardown()
        signals.authChanged.disconnect(self.on_auth_changed)
        signals.configSectionChanged.disconnect(self.on_config_changed)
        self.store.dispose()
        self.tracker.dispose()
        self._initialized = False

    @QtCore.Slot(bool)
    def on_auth_changed(self, signed_in: bool) -> None:
        logging.debug(f'Authentication changed: signed_in={signed_in}')
        self.store.set_authenticated(signed_in)
        if signed_in and not self.store.state.document_id and lib.settings.last_document_id:
            self.store.load(lib.settings.last_document_id)

    @QtCore.Slot(str)
    def on_config_changed(self, section: str) -> None:
        if section == 'autosave':
            self.tracker.enabled = lib.settings.autosave_enabled
            self.tracker.set_interval(lib.settings.autosave_interval_ms)

    def open_document(self, picker: DocumentPicker) -> bool:
        """Ask ``picker`` for a document id and load it.

        Unsaved changes to the current document are saved first.

        Returns:
            bool: False if the picker was cancelled or loading failed.
        """
        document_id = picker()
        if not document_id:
            logging.debug('No document picked.')
            return False
        if self.tracker.has_unsaved_changes:
            self.store.save()
        return self.store.load(document_id)
