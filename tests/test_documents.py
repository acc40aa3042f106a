"""Tests for loading, saving and creating documents through AccountTracker.core.store.

Run:
    python -m unittest tests.test_documents
"""
import unittest

from AccountTracker.core import model, tabular
from AccountTracker.core.store import State
from AccountTracker.settings import lib
from AccountTracker.ui.actions import signals
from tests.base import make_account, make_transaction
from tests.test_store import StoreTestCase


def _document(title: str = 'Household') -> dict:
    checking = make_account('Checking', id='a1')
    state = State(
        metadata=model.Metadata(title=title, owner='Sam'),
        accounts=(checking,),
        transactions=(make_transaction('a1', id='t1', payment='4.00'),),
        payees=(model.Payee(id='p1', name='Grocer'),),
    )
    return tabular.to_tabs(state)


class SaveTests(StoreTestCase):
    def test_save_requires_authentication(self):
        self.store.add_account('Checking')
        self.assertFalse(self.store.save())
        self.assertFalse(self.store.write())
        self.assertEqual(self.client.calls, [])
        self.assertTrue(self.tracker.has_unsaved_changes)

    def test_first_save_creates_a_document(self):
        self.store.set_authenticated(True)
        self.store.add_account('Checking')

        self.assertTrue(self.store.save())

        self.assertEqual(self.client.calls, ['create_document', 'write_all_tabs'])
        state = self.store.state
        self.assertEqual(state.document_id, 'doc1')
        self.assertEqual(state.metadata.title, lib.app_title)
        self.assertTrue(state.metadata.last_saved)
        self.assertEqual(lib.settings.last_document_id, 'doc1')
        self.assertFalse(self.tracker.has_unsaved_changes)
        self.assertIn('txn_Checking', self.client.documents['doc1'])

    def test_later_saves_rewrite_the_same_document(self):
        self.store.set_authenticated(True)
        self.store.add_account('Checking')
        self.store.save()
        self.store.add_account('Savings')
        self.assertTrue(self.store.save())
        self.assertEqual(self.client.calls, ['create_document', 'write_all_tabs', 'write_all_tabs'])
        self.assertIn('txn_Savings', self.client.documents['doc1'])

    def test_failed_save_keeps_changes(self):
        self.store.set_authenticated(True)
        self.store.add_account('Checking')
        self.client.fail.add('write_all_tabs')

        self.assertFalse(self.store.save())

        self.assertTrue(self.tracker.has_unsaved_changes)
        self.assertIn('write_all_tabs failed', self.store.state.error)
        self.assertFalse(self.store.state.loading)

    def test_save_is_refused_while_busy(self):
        self.store.set_authenticated(True)
        self.store._busy = True
        self.assertFalse(self.store.write())
        self.assertEqual(self.client.calls, [])


class LoadTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.client.documents['remote'] = _document()
        self.documents = []
        self.loaded = []
        signals.documentChanged.connect(self._on_document_changed)
        signals.dataLoaded.connect(self._on_data_loaded)

    def tearDown(self):
        signals.documentChanged.disconnect(self._on_document_changed)
        signals.dataLoaded.disconnect(self._on_data_loaded)
        super().tearDown()

    def _on_document_changed(self, document_id, title):
        self.documents.append((document_id, title))

    def _on_data_loaded(self):
        self.loaded.append(True)

    def test_load_replaces_collections(self):
        self.store.add_account('Local')

        self.assertTrue(self.store.load('remote'))

        state = self.store.state
        self.assertEqual([a.name for a in state.accounts], ['Checking'])
        self.assertEqual([t.id for t in state.transactions], ['t1'])
        self.assertEqual((state.document_id, state.document_title), ('remote', 'Household'))
        self.assertEqual(state.metadata.owner, 'Sam')
        self.assertFalse(self.tracker.has_unsaved_changes)
        self.assertEqual(lib.settings.last_document_id, 'remote')
        self.assertEqual(self.documents, [('remote', 'Household')])
        self.assertEqual(self.loaded, [True])

    def test_load_without_title_asks_the_backend(self):
        self.client.documents['remote'] = _document(title='')
        self.client.titles['remote'] = 'Budget 2024'
        self.assertTrue(self.store.load('remote'))
        self.assertEqual(self.store.state.document_title, 'Budget 2024')
        self.assertIn('get_title', self.client.calls)

    def test_failed_load_keeps_collections(self):
        account = self.store.add_account('Local')

        self.assertFalse(self.store.load('missing'))

        state = self.store.state
        self.assertEqual(state.accounts, (account,))
        self.assertEqual(state.document_id, '')
        self.assertTrue(state.error)
        self.assertFalse(state.loading)
        self.assertTrue(self.tracker.has_unsaved_changes)
        self.assertEqual(self.loaded, [])

    def test_load_is_refused_while_busy(self):
        self.store._busy = True
        self.assertFalse(self.store.load('remote'))
        self.assertEqual(self.client.calls, [])


class CreateAndCopyTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.client.documents['remote'] = _document()
        self.store.set_authenticated(True)
        self.store.load('remote')
        self.client.calls.clear()

    def test_create_new_starts_empty(self):
        self.assertTrue(self.store.create_new('Fresh', owner='Alex'))

        state = self.store.state
        self.assertEqual(state.accounts, ())
        self.assertEqual(state.transactions, ())
        self.assertEqual((state.metadata.title, state.metadata.owner), ('Fresh', 'Alex'))
        self.assertEqual(state.document_id, 'doc1')
        self.assertEqual(lib.settings.last_document_id, 'doc1')
        self.assertFalse(self.tracker.has_unsaved_changes)

        written = self.client.documents['doc1']
        self.assertEqual(list(written), list(tabular.fixed_tab_names()))
        self.assertEqual(written['_meta'][1][0], 'Fresh')
        self.assertIn('Checking', [r[1] for r in self.client.documents['remote']['accounts']])

    def test_create_new_defaults_to_the_stored_owner(self):
        lib.settings['owner'] = 'Robin'
        self.assertTrue(self.store.create_new('Fresh'))
        self.assertEqual(self.store.state.metadata.owner, 'Robin')
        meta = dict(zip(*self.client.documents['doc1']['_meta']))
        self.assertEqual(meta['owner'], 'Robin')

    def test_failed_create_keeps_current_document(self):
        self.client.fail.add('create_document')
        self.assertFalse(self.store.create_new('Fresh'))
        self.assertEqual(self.store.state.document_id, 'remote')
        self.assertEqual(len(self.store.state.accounts), 1)

    def test_save_as_copies_to_a_new_document(self):
        self.store.add_account('Savings')

        self.assertTrue(self.store.save_as('Copy'))

        self.assertEqual(self.client.calls, ['create_document', 'write_all_tabs'])
        state = self.store.state
        self.assertEqual((state.document_id, state.metadata.title), ('doc1', 'Copy'))
        self.assertEqual(len(state.accounts), 2)
        self.assertIn('txn_Savings', self.client.documents['doc1'])
        self.assertNotIn('txn_Savings', self.client.documents['remote'])
        self.assertFalse(self.tracker.has_unsaved_changes)

    def test_failed_save_as_keeps_pointer(self):
        self.store.add_account('Savings')
        self.client.fail.add('write_all_tabs')

        self.assertFalse(self.store.save_as('Copy'))

        self.assertEqual(self.store.state.document_id, 'remote')
        self.assertEqual(self.store.state.metadata.title, 'Household')
        self.assertEqual(lib.settings.last_document_id, 'remote')
        self.assertTrue(self.tracker.has_unsaved_changes)


if __name__ == '__main__':
    unittest.main()
