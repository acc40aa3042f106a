"""Dirty tracking and timed saving.

:class:`AutoSaveTracker` follows the document through two states. Any data mutation makes it
dirty and re-arms a single-shot timer; when the timer fires while still dirty, the injected save
function is called. Explicit saves go through the same :meth:`AutoSaveTracker.save_now`
routine, which runs one save at a time and queues at most one more.

Saving on teardown is best-effort only. The remote write may not finish before the process
exits, so it must not be relied on for durability.
"""
import dataclasses
import datetime
import logging
from typing import Callable, List, Optional

from PySide6 import QtCore, QtGui

from ..status import status

SaveFunction = Callable[[], bool]
Listener = Callable[['AutoSaveStatus'], None]


@dataclasses.dataclass(frozen=True)
class AutoSaveStatus:
    has_unsaved_changes: bool = False
    last_save_time: Optional[datetime.datetime] = None
    saving: bool = False


class AutoSaveTracker(QtCore.QObject):
    """Tracks unsaved changes and saves them on a timer.

    Args:
        interval_ms (int, optional): The debounce interval. Read from the ``autosave`` settings
            section when omitted.
        enabled (bool, optional): Whether the timer saves at all. Read from settings when omitted.
        confirm (callable, optional): Asked whether a close may proceed with unsaved changes.

    Signals:
        statusChanged (AutoSaveStatus): Emitted on every status change.
    """
    statusChanged = QtCore.Signal(object)

    def __init__(self, interval_ms: Optional[int] = None, enabled: Optional[bool] = None,
                 confirm: Optional[Callable[[], bool]] = None, parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)

        if interval_ms is None or enabled is None:
            from ..settings import lib
            if interval_ms is None:
                interval_ms = lib.settings.autosave_interval_ms
            if enabled is None:
                enabled = lib.settings.autosave_enabled

        self.interval_ms: int = interval_ms
        self.enabled: bool = enabled
        self.confirm = confirm

        self.has_unsaved_changes: bool = False
        self.last_save_time: Optional[datetime.datetime] = None

        self._generation: int = 0
        self._save_fn: Optional[SaveFunction] = None
        self._saving: bool = False
        self._pending: bool = False
        self._listeners: List[Listener] = []
        self._hooked_app: Optional[QtCore.QCoreApplication] = None

        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(self.interval_ms)
        self._timer.timeout.connect(self.on_timeout)

    @property
    def generation(self) -> int:
        """A counter bumped by every call to :meth:`mark_dirty`."""
        return self._generation

    @property
    def is_saving(self) -> bool:
        return self._saving

    def init(self, save_fn: SaveFunction) -> None:
        """Start tracking with ``save_fn`` as the save routine.

        ``save_fn`` returns True on success. The Qt application's ``aboutToQuit`` is hooked to
        :meth:`flush_on_teardown` when an application exists.
        """
        self._save_fn = save_fn
        app = QtCore.QCoreApplication.instance()
        if app is not None and self._hooked_app is None:
            app.aboutToQuit.connect(self.flush_on_teardown)
            self._hooked_app = app
        self._restart_timer()
        logging.debug(f'Autosave initialized ({self.interval_ms // 1000}s interval, enabled={self.enabled}).')

    def dispose(self) -> None:
        """Stop the timer and release the save routine and listeners."""
        self._timer.stop()
        if self._hooked_app is not None:
            self._hooked_app.aboutToQuit.disconnect(self.flush_on_teardown)
            self._hooked_app = None
        self._save_fn = None
        self._listeners.clear()

    def set_interval(self, interval_ms: int) -> None:
        self.interval_ms = interval_ms
        self._timer.setInterval(interval_ms)
        if self._timer.isActive():
            self._restart_timer()

    def status(self) -> AutoSaveStatus:
        return AutoSaveStatus(
            has_unsaved_changes=self.has_unsaved_changes,
            last_save_time=self.last_save_time,
            saving=self._saving,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the status on every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        s = self.status()
        self.statusChanged.emit(s)
        for listener in list(self._listeners):
            listener(s)

    def _restart_timer(self) -> None:
        self._timer.stop()
        if self.enabled and self._save_fn is not None:
            self._timer.start()

    def mark_dirty(self) -> None:
        self.has_unsaved_changes = True
        self._generation += 1
        self._restart_timer()
        self._notify()

    def mark_clean(self, since: Optional[int] = None) -> None:
        """Record a successful save.

        Args:
            since (int, optional): The :attr:`generation` captured when the save started. If
                changes arrived after it, the tracker stays dirty.
        """
        self.last_save_time = datetime.datetime.now(datetime.timezone.utc)
        if since is None or since == self._generation:
            self.has_unsaved_changes = False
            self._timer.stop()
        self._notify()

    def save_now(self) -> bool:
        """Run the save routine.

        Only one save runs at a time. A call made while a save is in flight is queued, and the
        queued save runs once the current one returns.

        Returns:
            bool: True if the last save run by this call succeeded. False if it failed or was
                queued behind a save already in flight.
        """
        if self._save_fn is None:
            logging.warning('Autosave is not initialized; nothing to save with.')
            return False

        if self._saving:
            logging.debug('A save is already in progress, queuing another.')
            self._pending = True
            return False

        self._saving = True
        self._notify()
        ok = False
        try:
            while True:
                self._pending = False
                token = self._generation
                try:
                    ok = bool(self._save_fn())
                except status.BaseStatusException as ex:
                    logging.error(f'Save failed: {ex}')
                    ok = False
                if ok:
                    self.mark_clean(token)
                if not self._pending:
                    break
                logging.debug('Running queued save.')
        finally:
            self._saving = False
            self._notify()
        return ok

    @QtCore.Slot()
    def on_timeout(self) -> None:
        if not self.has_unsaved_changes:
            return
        if self._saving:
            self._pending = True
            return

        logging.debug('Autosave timer fired.')
        if not self.save_now():
            logging.warning('Autosave failed, will retry on the next cycle.')
            self._restart_timer()

    @QtCore.Slot()
    def flush_on_teardown(self) -> bool:
        """Attempt a final save when there are unsaved changes.

        Returns:
            bool: True if nothing is left unsaved.
        """
        if not self.has_unsaved_changes:
            return True
        if self._save_fn is None:
            return False
        logging.info('Saving unsaved changes before closing.')
        self.save_now()
        return not self.has_unsaved_changes

    def handle_close_event(self, event: QtGui.QCloseEvent) -> bool:
        """Flush before a window closes, asking for confirmation if changes remain unsaved.

        The event is ignored when :attr:`confirm` refuses.

        Returns:
            bool: True if the close may proceed.
        """
        if self.flush_on_teardown() or self.confirm is None or self.confirm():
            event.accept()
            return True
        event.ignore()
        return False
