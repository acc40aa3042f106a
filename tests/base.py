"""Unittest base class for creating a clean test environment."""
import copy
import logging
import os
import shutil
import tempfile
import unittest
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import patch

from PySide6 import QtWidgets, QtCore

from AccountTracker.core import model, tabular
from AccountTracker.settings import lib
from AccountTracker.status import status


@contextmanager
def mute_ui_signals():
    from AccountTracker.ui.actions import signals
    blocker = QtCore.QSignalBlocker(signals)  # blocks every signal in `signals`
    try:
        yield
    finally:
        del blocker


class BaseTestCase(unittest.TestCase):
    """Base test case that sets up and tears down a temporary config directory."""

    config_paths: lib.ConfigPaths
    backup_dir: Optional[str]

    def setUp(self) -> None:
        """Set up a clean config directory and reinitialize the settings API."""
        # Ensure headless Qt
        if 'QT_QPA_PLATFORM' not in os.environ:
            os.environ['QT_QPA_PLATFORM'] = 'offscreen'
            logging.debug('QT_QPA_PLATFORM set to offscreen for headless testing.')

        # Ensure a QApplication is available
        if not QtWidgets.QApplication.instance():
            QtWidgets.QApplication([])  # type: ignore
            logging.debug('QtWidgets.QApplication initialized for tests.')

        # Prepare config paths
        self.config_paths = lib.ConfigPaths()
        self.backup_dir = None
        config_dir: Path = self.config_paths.config_dir

        # Backup and clear the existing config directory
        if config_dir.exists():
            self.backup_dir = tempfile.mkdtemp(prefix='accounttracker_test_')
            shutil.copytree(config_dir, self.backup_dir, dirs_exist_ok=True)
            logging.debug(f'Backed up config directory from {config_dir} to {self.backup_dir}')
            shutil.rmtree(config_dir)

        # Reinitialize settings API
        lib.settings = lib.SettingsAPI()
        logging.debug('SettingsAPI reinitialized.')

    def tearDown(self) -> None:
        """Tear down the test config and restore any original config directory."""
        patch.stopall()

        config_dir: Path = self.config_paths.config_dir
        if self.backup_dir and os.path.isdir(self.backup_dir):
            if config_dir.exists():
                shutil.rmtree(config_dir)
            shutil.copytree(self.backup_dir, config_dir, dirs_exist_ok=True)
            logging.debug(f'Restored config directory from {self.backup_dir} to {config_dir}')
            shutil.rmtree(self.backup_dir)


class StubRequest:
    """A prepared request recording its call on :meth:`execute`."""

    def __init__(self, service: 'StubSheetsService', name: str, kwargs: Dict[str, Any]):
        self.service = service
        self.name = name
        self.kwargs = kwargs

    def execute(self) -> Any:
        self.service.calls.append((self.name, self.kwargs))
        response = self.service.responses.get(self.name)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(**self.kwargs)
        return copy.deepcopy(response) if response is not None else {}


class StubResource:
    def __init__(self, service: 'StubSheetsService', prefix: str):
        self._service = service
        self._prefix = prefix

    def values(self) -> 'StubResource':
        return StubResource(self._service, f'{self._prefix}.values')

    def __getattr__(self, method: str) -> Callable[..., StubRequest]:
        if method.startswith('_'):
            raise AttributeError(method)
        return lambda **kwargs: StubRequest(self._service, f'{self._prefix}.{method}', kwargs)


class StubSheetsService:
    """Stands in for the Sheets API resource.

    Every executed request is appended to :attr:`calls` as ``(name, kwargs)``, where the name
    is the dotted method path, e.g. ``spreadsheets.values.batchGet``. :attr:`responses` maps
    such names to a response dict, a callable receiving the request kwargs, or an exception
    to raise.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.responses: Dict[str, Any] = dict(responses or {})

    def spreadsheets(self) -> StubResource:
        return StubResource(self, 'spreadsheets')

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def close(self) -> None:
        pass


def sheet_listing(*tabs: Tuple[str, int, int]) -> Dict[str, Any]:
    """Build a ``spreadsheets.get`` response from ``(title, rowCount, columnCount)`` tuples."""
    return {'sheets': [
        {'properties': {
            'sheetId': i + 1,
            'title': title,
            'gridProperties': {'rowCount': rows, 'columnCount': columns},
        }}
        for i, (title, rows, columns) in enumerate(tabs)
    ]}


class FakeSheetsClient:
    """An in-memory remote store client.

    Documents are kept as tab-to-rows dicts. Method names listed in :attr:`fail` raise a
    :class:`status.RemoteServiceException` instead of running.
    """

    def __init__(self):
        self.documents: Dict[str, Dict[str, List[List[str]]]] = {}
        self.titles: Dict[str, str] = {}
        self.calls: List[str] = []
        self.fail: set = set()
        self._count = 0

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise status.RemoteServiceException(f'{name} failed', status_code=500)

    def create_document(self, title: str) -> str:
        self._check('create_document')
        self._count += 1
        document_id = f'doc{self._count}'
        self.documents[document_id] = tabular.header_rows()
        self.titles[document_id] = title
        return document_id

    def read_all_tabs(self, document_id: str) -> Dict[str, List[List[str]]]:
        self._check('read_all_tabs')
        if document_id not in self.documents:
            raise status.RemoteServiceException('Requested entity was not found.', status_code=404)
        return copy.deepcopy(self.documents[document_id])

    def write_all_tabs(self, document_id: str, tabs: Dict[str, List[List[str]]]) -> None:
        self._check('write_all_tabs')
        self.documents[document_id] = {k: [list(r) for r in v] for k, v in tabs.items()}

    def get_title(self, document_id: str) -> str:
        self._check('get_title')
        return self.titles.get(document_id, 'Untitled')


def make_account(name: str = 'Checking', **kwargs: Any) -> model.Account:
    kwargs.setdefault('id', model.new_id())
    kwargs.setdefault('created_at', '2024-01-01T00:00:00.000+00:00')
    return model.Account(name=name, **kwargs)


def make_transaction(account_id: str, date: str = '2024-01-15', payment: str = '', deposit: str = '',
                     **kwargs: Any) -> model.Transaction:
    kwargs.setdefault('id', model.new_id())
    return model.Transaction(account_id=account_id, date=date, payment=payment, deposit=deposit, **kwargs)
