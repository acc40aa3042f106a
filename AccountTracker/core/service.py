"""Google Sheets API integration with asynchronous operations.

Provides the remote store client used by the state store: creating a document, reading every
tab, rewriting every tab, and fetching the document title. Each logical operation issues a
bounded number of batched requests. The blocking implementations are prefixed with an
underscore; :class:`SheetsClient` runs them on a worker thread through
:func:`start_asynchronous`.
"""

import logging
import socket
import ssl
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from PySide6 import QtCore
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import tabular
from .auth import auth_manager
from ..status import status
from ..ui.actions import signals

# Cached Sheets API client to avoid repeated discovery/auth costs
_cached_service: Any = None

TOTAL_TIMEOUT: int = 180
MAX_RETRIES: int = 3
UNTITLED: str = 'Untitled'

TRANSPORT_ERRORS = (socket.timeout, ssl.SSLError, ConnectionError, TimeoutError)


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread with retry logic for blocking functions.

    Status exceptions are final and reported at once. Transport errors are retried up to
    ``max_attempts`` times.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', MAX_RETRIES)
        self.wait_seconds = kwargs.pop('wait_seconds', 2.0)
        self.kwargs = kwargs

    def run(self) -> None:
        attempts = 0
        last_exception = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                result = self.func(*self.args, **self.kwargs)
                self.resultReady.emit(result)
                return
            except status.AuthenticationRequiredException as ex:
                # Notify GUI that interactive authentication is required
                signals.authenticationRequested.emit()
                self.errorOccurred.emit(ex)
                return
            except status.BaseStatusException as ex:
                self.errorOccurred.emit(ex)
                return
            except TRANSPORT_ERRORS as ex:
                logging.warning(f'Attempt {attempts}/{self.max_attempts} failed: {ex}')
                last_exception = ex
                if attempts < self.max_attempts:
                    time.sleep(self.wait_seconds)
            except Exception as ex:
                self.errorOccurred.emit(ex)
                return
        # All retries exhausted
        self.errorOccurred.emit(last_exception)


def clear_service() -> None:
    """
    Clears the cached Sheets API client.
    """
    global _cached_service

    if _cached_service is not None:
        try:
            _cached_service.close()
        except (AttributeError, OSError) as ex:
            logging.debug(f'Failed closing cached Sheets service client: {ex}')

    _cached_service = None


def get_service() -> Any:
    """
    Builds (or returns cached) Google Sheets service client.

    Returns:
        The Sheets API Resource, reusing a single client per app run.

    Raises:
        status.AuthenticationRequiredException: If no usable credential is available.
    """
    global _cached_service
    creds: Any = auth_manager.get_valid_credentials()
    if _cached_service is not None:
        return _cached_service

    service: Any = build('sheets', 'v4', credentials=creds)
    logging.debug('Google Sheets service client created successfully.')
    _cached_service = service
    return service


def _execute(request: Any) -> Dict[str, Any]:
    """Execute a prepared API request, translating backend errors.

    Raises:
        status.RemoteServiceException: If the backend answers with an HTTP error.
    """
    try:
        return request.execute() or {}
    except HttpError as ex:
        code: Optional[int] = ex.resp.status if ex.resp else None
        reason: str = getattr(ex, 'reason', '') or str(ex)
        raise status.RemoteServiceException(f'HTTP {code}: {reason}', status_code=code) from ex


def _list_tabs(service: Any, document_id: str) -> List[Dict[str, Any]]:
    """
    Lists the tabs of a document with their grid sizes.

    Returns:
        A list of dicts with ``title``, ``sheetId``, ``rowCount`` and ``columnCount``.
    """
    result: Dict[str, Any] = _execute(service.spreadsheets().get(
        spreadsheetId=document_id,
        fields='sheets(properties(sheetId,title,gridProperties(rowCount,columnCount)))'
    ))
    tabs = []
    for sheet in result.get('sheets', []):
        props: Dict[str, Any] = sheet.get('properties', {})
        grid: Dict[str, Any] = props.get('gridProperties', {})
        tabs.append({
            'title': props.get('title', ''),
            'sheetId': props.get('sheetId'),
            'rowCount': grid.get('rowCount', 0),
            'columnCount': grid.get('columnCount', 0),
        })
    return tabs


def _width(rows: Sequence[Sequence[Any]]) -> int:
    return max((len(r) for r in rows), default=0)


def _add_sheet(title: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
    return {'addSheet': {'properties': {
        'title': title,
        'gridProperties': {'rowCount': max(len(rows), 1), 'columnCount': max(_width(rows), 1)},
    }}}


def _create_document(title: str) -> str:
    """
    Creates a document holding every fixed tab and writes their header rows.

    Returns:
        The new document id.
    """
    service: Any = get_service()
    body = {
        'properties': {'title': title},
        'sheets': [{'properties': {'title': tab}} for tab in tabular.fixed_tab_names()],
    }
    result: Dict[str, Any] = _execute(service.spreadsheets().create(body=body, fields='spreadsheetId'))
    document_id: str = result['spreadsheetId']
    logging.debug(f'Created document "{title}" ({document_id}).')

    data = [
        {'range': tabular.a1_range(tab, len(rows), _width(rows)), 'values': rows}
        for tab, rows in tabular.header_rows().items()
    ]
    _execute(service.spreadsheets().values().batchUpdate(
        spreadsheetId=document_id,
        body={'valueInputOption': 'RAW', 'data': data},
    ))
    return document_id


def _read_all_tabs(document_id: str) -> Dict[str, List[List[Any]]]:
    """
    Reads every tab of a document with one batched request.

    Returns:
        Tab title to rows, in the document's tab order.
    """
    service: Any = get_service()
    titles: List[str] = [t['title'] for t in _list_tabs(service, document_id)]
    if not titles:
        return {}

    logging.debug(f'Fetching {len(titles)} tabs from "{document_id}".')
    result: Dict[str, Any] = _execute(service.spreadsheets().values().batchGet(
        spreadsheetId=document_id,
        ranges=[tabular.a1_range(t) for t in titles],
        valueRenderOption='FORMATTED_VALUE',
    ))
    value_ranges: List[Dict[str, Any]] = result.get('valueRanges', [])
    return {title: vr.get('values', []) for title, vr in zip(titles, value_ranges)}


def _write_all_tabs(document_id: str, tabs: Mapping[str, Sequence[Sequence[Any]]]) -> None:
    """
    Rewrites a document from serialized tabs.

    Issues, in order: one tab listing, one structural batch (add missing fixed tabs, delete every
    transaction tab, add the new transaction tabs, grow fixed tabs that are too small), one
    batched clear of the fixed tabs and one batched value update of every tab.
    """
    service: Any = get_service()
    existing: List[Dict[str, Any]] = _list_tabs(service, document_id)
    by_title: Dict[str, Dict[str, Any]] = {t['title']: t for t in existing}

    fixed: List[str] = [t for t in tabs if not tabular.is_transaction_tab(t)]
    transaction_tabs: List[str] = [t for t in tabs if tabular.is_transaction_tab(t)]

    requests: List[Dict[str, Any]] = []
    for tab in fixed:
        rows = tabs[tab]
        current = by_title.get(tab)
        if current is None:
            requests.append(_add_sheet(tab, rows))
            continue
        if current['rowCount'] < len(rows) or current['columnCount'] < _width(rows):
            requests.append({'updateSheetProperties': {
                'properties': {
                    'sheetId': current['sheetId'],
                    'gridProperties': {
                        'rowCount': max(current['rowCount'], len(rows)),
                        'columnCount': max(current['columnCount'], _width(rows)),
                    },
                },
                'fields': 'gridProperties(rowCount,columnCount)',
            }})
    for t in existing:
        if tabular.is_transaction_tab(t['title']):
            requests.append({'deleteSheet': {'sheetId': t['sheetId']}})
    for tab in transaction_tabs:
        requests.append(_add_sheet(tab, tabs[tab]))

    if requests:
        logging.debug(f'Applying {len(requests)} structural changes to "{document_id}".')
        _execute(service.spreadsheets().batchUpdate(
            spreadsheetId=document_id,
            body={'requests': requests},
        ))

    if fixed:
        _execute(service.spreadsheets().values().batchClear(
            spreadsheetId=document_id,
            body={'ranges': [tabular.a1_range(t) for t in fixed]},
        ))

    data = [
        {'range': tabular.a1_range(tab, len(rows), _width(rows)), 'values': [list(r) for r in rows]}
        for tab, rows in tabs.items() if rows
    ]
    _execute(service.spreadsheets().values().batchUpdate(
        spreadsheetId=document_id,
        body={'valueInputOption': 'RAW', 'data': data},
    ))
    logging.debug(f'Wrote {len(data)} tabs to "{document_id}".')


def _get_title(document_id: str) -> str:
    """
    Returns the document title, or ``Untitled`` when it has none.
    """
    service: Any = get_service()
    result: Dict[str, Any] = _execute(service.spreadsheets().get(
        spreadsheetId=document_id,
        fields='properties.title',
    ))
    return result.get('properties', {}).get('title') or UNTITLED


def start_asynchronous(func: Callable[..., Any], *args: Any, total_timeout: int = TOTAL_TIMEOUT,
                       **kwargs: Any) -> Any:
    """
    Generic asynchronous operation wrapper.

    Creates and runs an AsyncWorker and waits for it in a local event loop.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.
        total_timeout (int): Total operation timeout in seconds.

    Returns:
        The result of the function on success.

    Raises:
        status.BaseStatusException: Any status exception raised by ``func``.
        status.RemoteServiceException: If the operation times out or fails otherwise.
    """
    worker: AsyncWorker = AsyncWorker(func, *args, **kwargs)

    result: Dict[str, Any] = {'data': None, 'error': None, 'done': False}
    loop: QtCore.QEventLoop = QtCore.QEventLoop()

    worker.resultReady.connect(lambda d: (result.update({'data': d, 'done': True}), loop.quit()))
    worker.errorOccurred.connect(lambda err: (result.update({'error': err, 'done': True}), loop.quit()))

    worker.start()

    timer: QtCore.QTimer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.setInterval(total_timeout * 1000)
    timer.timeout.connect(loop.quit)
    timer.start()
    if not result['done']:
        loop.exec()
    timer.stop()

    if not result['done']:
        worker.terminate()
        worker.wait()
        raise status.RemoteServiceException('Operation timed out.')
    worker.wait()

    if result['error'] is not None:
        err = result['error']
        # Propagate known status exceptions directly
        if isinstance(err, status.BaseStatusException):
            raise err
        raise status.RemoteServiceException(str(err)) from err
    return result['data']


class SheetsClient:
    """The remote store client consumed by the state store.

    Args:
        asynchronous (bool): Run requests on a worker thread. When False, requests run
            directly on the calling thread.
        total_timeout (int): Timeout in seconds for each asynchronous operation.
    """

    def __init__(self, asynchronous: bool = True, total_timeout: int = TOTAL_TIMEOUT):
        self.asynchronous = asynchronous
        self.total_timeout = total_timeout

    def _run(self, func: Callable[..., Any], *args: Any, max_attempts: int = MAX_RETRIES) -> Any:
        if self.asynchronous:
            return start_asynchronous(
                func, *args, total_timeout=self.total_timeout, max_attempts=max_attempts
            )
        try:
            return func(*args)
        except TRANSPORT_ERRORS as ex:
            raise status.RemoteServiceException(str(ex)) from ex

    def create_document(self, title: str) -> str:
        # Not retried: a lost response would otherwise create a second document
        return self._run(_create_document, title, max_attempts=1)

    def read_all_tabs(self, document_id: str) -> Dict[str, List[List[Any]]]:
        return self._run(_read_all_tabs, document_id)

    def write_all_tabs(self, document_id: str, tabs: Mapping[str, Sequence[Sequence[Any]]]) -> None:
        self._run(_write_all_tabs, document_id, tabs)

    def get_title(self, document_id: str) -> str:
        return self._run(_get_title, document_id)


# Reset cached Sheets API client when credentials/config change
@QtCore.Slot(str)
def _reset_cached_service(section: str) -> None:
    """Clear the cached Sheets client when client_secret changes."""
    if section == 'client_secret':
        logging.debug('Clearing cached Sheets service client due to client_secret change')
        clear_service()


signals.configSectionChanged.connect(_reset_cached_service)
