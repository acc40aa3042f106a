"""Tests for AccountTracker.core.service, run against a stubbed Sheets API resource.

Run:
    python -m unittest tests.test_service
"""
import time
import unittest
from unittest import mock
from unittest.mock import patch

from googleapiclient.errors import HttpError

from AccountTracker.core import service, tabular
from AccountTracker.status import status
from AccountTracker.ui.actions import signals
from tests.base import BaseTestCase, StubSheetsService, sheet_listing


def _http_error(code: int, message: str) -> HttpError:
    resp = mock.Mock(status=code, reason='Error')
    content = f'{{"error": {{"code": {code}, "message": "{message}"}}}}'.encode('utf-8')
    return HttpError(resp, content)


class ServiceTestCase(BaseTestCase):
    def setUp(self):
        super().setUp()
        self.stub = StubSheetsService()
        patch('AccountTracker.core.service.get_service', return_value=self.stub).start()
        self.client = service.SheetsClient(asynchronous=False)

    def tearDown(self):
        service.clear_service()
        super().tearDown()


class ReadTests(ServiceTestCase):
    def test_read_all_tabs_uses_one_batched_read(self):
        self.stub.responses['spreadsheets.get'] = sheet_listing(('_meta', 10, 4), ('txn_Main', 10, 11))
        self.stub.responses['spreadsheets.values.batchGet'] = {'valueRanges': [
            {'values': [['title'], ['Home']]},
            {},
        ]}

        tabs = self.client.read_all_tabs('doc')

        self.assertEqual(self.stub.names(), ['spreadsheets.get', 'spreadsheets.values.batchGet'])
        self.assertEqual(tabs, {'_meta': [['title'], ['Home']], 'txn_Main': []})
        _, kwargs = self.stub.calls[1]
        self.assertEqual(kwargs['ranges'], ["'_meta'", "'txn_Main'"])

    def test_read_empty_document(self):
        self.stub.responses['spreadsheets.get'] = {'sheets': []}
        self.assertEqual(self.client.read_all_tabs('doc'), {})
        self.assertEqual(self.stub.names(), ['spreadsheets.get'])

    def test_get_title_falls_back_to_untitled(self):
        self.stub.responses['spreadsheets.get'] = {'properties': {'title': 'Budget'}}
        self.assertEqual(self.client.get_title('doc'), 'Budget')
        self.stub.responses['spreadsheets.get'] = {'properties': {}}
        self.assertEqual(self.client.get_title('doc'), service.UNTITLED)


class CreateTests(ServiceTestCase):
    def test_create_document_writes_header_rows(self):
        self.stub.responses['spreadsheets.create'] = {'spreadsheetId': 'new-doc'}

        document_id = self.client.create_document('Household')

        self.assertEqual(document_id, 'new-doc')
        self.assertEqual(self.stub.names(), ['spreadsheets.create', 'spreadsheets.values.batchUpdate'])
        body = self.stub.calls[0][1]['body']
        self.assertEqual(body['properties']['title'], 'Household')
        self.assertEqual([s['properties']['title'] for s in body['sheets']], list(tabular.fixed_tab_names()))

        data = self.stub.calls[1][1]['body']['data']
        self.assertEqual(len(data), len(tabular.FIXED_TABS))
        self.assertEqual(data[0]['values'], [['title', 'owner', 'lastSaved', 'version']])
        self.assertEqual(data[0]['range'], "'_meta'!A1:D1")


class WriteTests(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.tabs = tabular.header_rows()
        self.tabs['accounts'].append(['a1', 'Main', '', '', '', '', 'checking', ''])
        self.tabs['txn_Main'] = [list(tabular.TRANSACTION_HEADERS)]

    def test_write_issues_four_requests(self):
        self.stub.responses['spreadsheets.get'] = sheet_listing(
            ('_meta', 1000, 26),
            ('accounts', 1000, 26),
            ('txn_Old', 1000, 26),
        )

        self.client.write_all_tabs('doc', self.tabs)

        self.assertEqual(self.stub.names(), [
            'spreadsheets.get',
            'spreadsheets.batchUpdate',
            'spreadsheets.values.batchClear',
            'spreadsheets.values.batchUpdate',
        ])
        requests = self.stub.calls[1][1]['body']['requests']
        added = [r['addSheet']['properties']['title'] for r in requests if 'addSheet' in r]
        deleted = [r['deleteSheet']['sheetId'] for r in requests if 'deleteSheet' in r]
        self.assertEqual(added, ['payees', 'categories', 'reconciliations', 'txn_Main'])
        self.assertEqual(deleted, [3])

        cleared = self.stub.calls[2][1]['body']['ranges']
        self.assertEqual(cleared, [tabular.a1_range(t) for t in tabular.fixed_tab_names()])

        data = self.stub.calls[3][1]['body']['data']
        self.assertEqual([d['range'] for d in data][-1], "'txn_Main'!A1:K1")
        self.assertEqual(self.stub.calls[3][1]['body']['valueInputOption'], 'RAW')

    def test_small_fixed_tabs_are_grown(self):
        self.stub.responses['spreadsheets.get'] = sheet_listing(
            ('_meta', 1000, 26),
            ('accounts', 1, 2),
            ('payees', 1000, 26),
            ('categories', 1000, 26),
            ('reconciliations', 1000, 26),
        )
        self.client.write_all_tabs('doc', self.tabs)

        requests = self.stub.calls[1][1]['body']['requests']
        grown = [r['updateSheetProperties'] for r in requests if 'updateSheetProperties' in r]
        self.assertEqual(len(grown), 1)
        grid = grown[0]['properties']['gridProperties']
        self.assertEqual(grid, {'rowCount': 2, 'columnCount': 8})

    def test_no_structural_batch_when_nothing_changes(self):
        self.stub.responses['spreadsheets.get'] = sheet_listing(
            *[(t, 1000, 26) for t in tabular.fixed_tab_names()]
        )
        del self.tabs['txn_Main']
        self.client.write_all_tabs('doc', self.tabs)
        self.assertNotIn('spreadsheets.batchUpdate', self.stub.names())


class ErrorTests(ServiceTestCase):
    def test_http_error_becomes_remote_service_exception(self):
        self.stub.responses['spreadsheets.get'] = _http_error(404, 'Requested entity was not found.')
        with self.assertRaises(status.RemoteServiceException) as ctx:
            self.client.read_all_tabs('missing')
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertIn('HTTP 404', str(ctx.exception))

    def test_transport_errors_are_wrapped(self):
        self.stub.responses['spreadsheets.get'] = ConnectionError('connection reset')
        with self.assertRaises(status.RemoteServiceException):
            self.client.get_title('doc')


class GetServiceTests(BaseTestCase):
    def tearDown(self):
        service.clear_service()
        super().tearDown()

    def test_requires_credentials(self):
        with patch.object(service.auth_manager, 'get_valid_credentials',
                          side_effect=status.AuthenticationRequiredException('No credentials found.')):
            with self.assertRaises(status.AuthenticationRequiredException):
                service.get_service()

    def test_service_is_cached(self):
        stub = StubSheetsService()
        with patch.object(service.auth_manager, 'get_valid_credentials', return_value=object()), \
                patch.object(service, 'build', return_value=stub) as mock_build:
            self.assertIs(service.get_service(), stub)
            self.assertIs(service.get_service(), stub)
        mock_build.assert_called_once()

    def test_client_secret_change_clears_cache(self):
        service._cached_service = StubSheetsService()
        signals.configSectionChanged.emit('client_secret')
        self.assertIsNone(service._cached_service)


def _slow(value, delay=0.2):
    time.sleep(delay)
    if isinstance(value, Exception):
        raise value
    return value


class AsyncTests(BaseTestCase):
    def test_worker_retries_transport_errors(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError('reset')
            return 'ok'

        worker = service.AsyncWorker(flaky, max_attempts=3, wait_seconds=0)
        results = []
        worker.resultReady.connect(results.append)
        worker.run()
        self.assertEqual(results, ['ok'])
        self.assertEqual(len(attempts), 3)

    def test_worker_does_not_retry_status_errors(self):
        attempts = []

        def fails():
            attempts.append(1)
            raise status.RemoteServiceException('HTTP 500: backend', status_code=500)

        worker = service.AsyncWorker(fails, max_attempts=3, wait_seconds=0)
        errors = []
        worker.errorOccurred.connect(errors.append)
        worker.run()
        self.assertEqual(len(attempts), 1)
        self.assertIsInstance(errors[0], status.RemoteServiceException)

    def test_worker_requests_authentication(self):
        requested = []

        def _slot():
            requested.append(True)

        signals.authenticationRequested.connect(_slot)
        try:
            worker = service.AsyncWorker(
                _slow, status.AuthenticationRequiredException('expired'), 0, wait_seconds=0)
            worker.run()
        finally:
            signals.authenticationRequested.disconnect(_slot)
        self.assertTrue(requested)

    def test_start_asynchronous_returns_result(self):
        self.assertEqual(service.start_asynchronous(_slow, 42, total_timeout=10), 42)

    def test_start_asynchronous_reraises_status_errors(self):
        with self.assertRaises(status.ValidationException):
            service.start_asynchronous(_slow, status.ValidationException('bad'), total_timeout=10)

    def test_start_asynchronous_wraps_other_errors(self):
        with self.assertRaises(status.RemoteServiceException):
            service.start_asynchronous(_slow, ValueError('boom'), total_timeout=10)


if __name__ == '__main__':
    unittest.main()
