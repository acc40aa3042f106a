"""
Google OAuth2 authentication and credential management.

Provides the credential provider used by the remote store client: loading and refreshing
stored credentials, running the installed-app OAuth flow on a worker thread, and signing out.
Authentication changes are announced on ``signals.authChanged``.
"""

import json
import logging
import threading
from typing import Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
from PySide6 import QtCore

from ..status import status

DEFAULT_SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive.file',
]

SIGN_IN_TIMEOUT: int = 120


class AuthManager:
    """Manages OAuth2 credentials with thread-safe refresh."""

    def __init__(self, scopes=None):
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None
        self.scopes = list(scopes or DEFAULT_SCOPES)

    def _load_creds(self) -> Optional[google.oauth2.credentials.Credentials]:
        """Load the stored credentials, returning None if there are none.

        Raises:
            status.CredsInvalidException: if the stored credentials are corrupt.
        """
        from ..settings import lib

        if self._creds is not None:
            return self._creds
        if not lib.settings.creds_path.exists():
            return None
        try:
            self._creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                str(lib.settings.creds_path))
        except (ValueError, json.JSONDecodeError) as ex:
            lib.settings.creds_path.unlink(missing_ok=True)
            raise status.CredsInvalidException('Failed to load credentials.') from ex
        return self._creds

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any UI.

        Raises:
            status.AuthenticationRequiredException: if no usable credential exists.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        with self._lock:
            creds = self._load_creds()
            if creds is None:
                raise status.AuthenticationRequiredException('No credentials found.')

            if not set(self.scopes).issubset(set(creds.scopes or self.scopes)):
                self._creds = None
                raise status.AuthenticationRequiredException('Stored credentials have mismatched scopes.')

            # Attempt non-interactive refresh if expired
            if creds.expired or not creds.token:
                if not creds.refresh_token:
                    raise status.AuthenticationRequiredException('Credentials expired.')
                try:
                    creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.RefreshError as ex:
                    raise status.AuthenticationRequiredException(
                        f'Failed to refresh credentials: {ex}') from ex
                save_creds(creds)

            return creds

    def get_token(self) -> str:
        """Return a valid access token.

        Raises:
            status.AuthenticationRequiredException: if no usable credential exists.
        """
        return self.get_valid_credentials().token

    def is_signed_in(self) -> bool:
        """Return True if stored credentials exist that are valid or can be refreshed."""
        from ..settings import lib

        if self._creds is None and not lib.settings.creds_path.exists():
            return False
        try:
            with self._lock:
                creds = self._load_creds()
        except status.CredsInvalidException:
            return False
        return bool(creds and (creds.valid or creds.refresh_token))

    def sign_in(self, timeout: int = SIGN_IN_TIMEOUT) -> google.oauth2.credentials.Credentials:
        """Run the interactive OAuth flow and store the resulting credentials.

        The flow runs on an :class:`AuthFlowWorker` while a local event loop keeps the
        application responsive.

        Raises:
            status.ClientSecretInvalidException: if the client secret is incomplete.
            status.AuthenticationRequiredException: if the flow fails, times out or is cancelled.
        """
        from ..settings import lib
        from ..ui.actions import signals
        from . import service

        lib.settings.validate_client_secret()
        client_config = lib.settings.get_section('client_secret')

        logging.debug('Starting new OAuth flow...')
        flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=self.scopes)
        creds = run_flow(flow, timeout=timeout)

        with self._lock:
            save_creds(creds)
            self._creds = creds

        service.clear_service()
        signals.authChanged.emit(True)
        return creds

    def sign_out(self) -> None:
        """Forget the credentials and announce the change."""
        from ..ui.actions import signals
        from . import service

        with self._lock:
            self._creds = None
            sign_out()
        service.clear_service()
        signals.authChanged.emit(False)


auth_manager = AuthManager()


class AuthFlowWorker(QtCore.QThread):
    """
    Runs OAuth web flow in a background thread.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, parent=None):
        super().__init__(parent)
        self.flow = flow
        self.creds = None

    def run(self):
        logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: starting local server')
        try:
            self.creds = self.flow.run_local_server(port=0)
        except Exception as ex:
            self.errorOccurred.emit(ex)
            return
        if not self.creds or not self.creds.token:
            self.errorOccurred.emit(RuntimeError('Authentication did not complete successfully.'))
            return
        self.resultReady.emit(self.creds)


def run_flow(flow: google_auth_oauthlib.flow.InstalledAppFlow,
             timeout: int = SIGN_IN_TIMEOUT) -> google.oauth2.credentials.Credentials:
    """Run ``flow`` on a worker thread and wait for it in a local event loop.

    Raises:
        status.AuthenticationRequiredException: if the flow fails or times out.
    """
    auth_worker = AuthFlowWorker(flow)
    result = {'creds': None, 'error': None, 'done': False}
    loop = QtCore.QEventLoop()

    auth_worker.resultReady.connect(lambda c: (result.update({'creds': c, 'done': True}), loop.quit()))
    auth_worker.errorOccurred.connect(lambda err: (result.update({'error': err, 'done': True}), loop.quit()))

    auth_worker.start()

    timer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.timeout.connect(loop.quit)
    timer.start(timeout * 1000)

    if not result['done']:
        loop.exec()
    timer.stop()

    if not result['done']:
        auth_worker.terminate()
        auth_worker.wait()
        raise status.AuthenticationRequiredException('OAuth flow timed out (no response from browser).')

    auth_worker.wait()
    logging.debug('OAuth flow completed.')
    if result['error']:
        raise status.AuthenticationRequiredException(f'OAuth flow failed: {result["error"]}')
    if not result['creds']:
        raise status.AuthenticationRequiredException('Authentication was cancelled.')
    return result['creds']


def save_creds(creds: google.oauth2.credentials.Credentials) -> None:
    """
    Save OAuth2 credentials to the configured token file.
    """
    from ..settings import lib
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {lib.settings.creds_path}.')


def sign_out() -> None:
    """
    Delete stored credentials to sign out the user.
    """
    from ..settings import lib
    if lib.settings.creds_path.exists():
        logging.debug(f'Deleting {lib.settings.creds_path}...')
        lib.settings.creds_path.unlink()
        logging.debug('Successfully signed out.')
    else:
        logging.debug('No credentials file found. No action taken.')
