"""Tests for AccountTracker.core.tabular.

Run:
    python -m unittest tests.test_tabular
"""
import dataclasses
import unittest

from AccountTracker.core import model, tabular
from AccountTracker.core.store import State
from tests.base import make_account, make_transaction


class RangeTests(unittest.TestCase):
    def test_idx_to_col(self):
        self.assertEqual(tabular.idx_to_col(0), 'A')
        self.assertEqual(tabular.idx_to_col(25), 'Z')
        self.assertEqual(tabular.idx_to_col(26), 'AA')
        self.assertEqual(tabular.idx_to_col(701), 'ZZ')

    def test_a1_range_quotes_tab_names(self):
        self.assertEqual(tabular.a1_range('accounts'), "'accounts'")
        self.assertEqual(tabular.a1_range("Bob's"), "'Bob''s'")
        self.assertEqual(tabular.a1_range('txn_Main', rows=3, columns=11), "'txn_Main'!A1:K3")


class TabNameTests(unittest.TestCase):
    def test_plain_names(self):
        accounts = [make_account('Checking', id='aaaa1111'), make_account('Savings', id='bbbb2222')]
        self.assertEqual(tabular.assign_tab_names(accounts), ['txn_Checking', 'txn_Savings'])

    def test_illegal_characters_are_removed(self):
        accounts = [make_account('Visa/MC [2]', id='aaaa1111')]
        self.assertEqual(tabular.assign_tab_names(accounts), ['txn_VisaMC 2'])

    def test_shared_name_gets_id_prefix_on_every_account(self):
        accounts = [make_account('Chase', id='aaaa1111'), make_account('Chase', id='bbbb2222')]
        self.assertEqual(tabular.assign_tab_names(accounts), ['txn_Chase (aaaa)', 'txn_Chase (bbbb)'])

    def test_case_insensitive_collisions_get_id_suffix(self):
        accounts = [make_account('Main', id='aaaa1111'), make_account('MAIN', id='bbbb2222')]
        self.assertEqual(
            tabular.assign_tab_names(accounts),
            ['txn_Main (aaaa)', 'txn_MAIN (bbbb)'],
        )

    def test_remaining_clash_gets_counter(self):
        accounts = [make_account('Main', id='aaaa1111'), make_account('Main', id='aaaa2222')]
        self.assertEqual(
            tabular.assign_tab_names(accounts),
            ['txn_Main (aaaa)', 'txn_Main (aaaa) 2'],
        )

    def test_empty_name_falls_back_to_id(self):
        accounts = [make_account('[]', id='cafe0001')]
        self.assertEqual(tabular.assign_tab_names(accounts), ['txn_cafe0001'])

    def test_names_are_unique_and_bounded(self):
        long_name = 'x' * 300
        accounts = [make_account(long_name, id=f'{i:04d}abcd') for i in range(3)]
        names = tabular.assign_tab_names(accounts)
        self.assertEqual(len({n.casefold() for n in names}), 3)
        for name in names:
            self.assertLessEqual(len(name), tabular.MAX_TAB_NAME_LENGTH)
            self.assertTrue(name.startswith(tabular.TXN_TAB_PREFIX))


class SerializationTests(unittest.TestCase):
    def setUp(self):
        self.checking = make_account('Checking', id='a1')
        self.savings = make_account('Savings', id='a2', type='savings')
        self.state = State(
            metadata=model.Metadata(title='Home', owner='Sam'),
            accounts=(self.checking, self.savings),
            transactions=(
                make_transaction('a1', id='t1', payment='12.5', payee='Grocer'),
                make_transaction('a2', id='t2', deposit='100', cleared=True),
                make_transaction('a1', id='t3', date='2024-01-02', deposit='3'),
            ),
            payees=(model.Payee(id='p1', name='Grocer'),),
            categories=(model.Category(id='c1', name='Food'),),
            reconciliations=(model.Reconciliation(
                id='r1', account_id='a2', date='2024-01-31', statement_opening_balance='0.00',
                statement_closing_balance='100.00', transaction_ids=('t2',)),),
        )

    def test_tab_order(self):
        tabs = tabular.to_tabs(self.state)
        self.assertEqual(
            list(tabs),
            ['_meta', 'accounts', 'payees', 'categories', 'reconciliations', 'txn_Checking', 'txn_Savings'],
        )

    def test_every_tab_starts_with_headers(self):
        tabs = tabular.to_tabs(self.state)
        self.assertEqual(tabs['accounts'][0], model.Account.headers())
        self.assertEqual(tabs['txn_Checking'][0], tabular.TRANSACTION_HEADERS)
        self.assertEqual(len(tabs['txn_Checking']), 3)
        self.assertEqual(len(tabs['txn_Savings']), 2)

    def test_amounts_are_written_with_two_decimals(self):
        tabs = tabular.to_tabs(self.state)
        headers = tabular.TRANSACTION_HEADERS
        row = tabs['txn_Checking'][1]
        self.assertEqual(row[headers.index('payment')], '12.50')
        self.assertEqual(row[headers.index('deposit')], '')

    def test_saved_at_stamps_metadata(self):
        tabs = tabular.to_tabs(self.state, saved_at='2024-02-01T00:00:00.000+00:00')
        meta = dict(zip(tabs['_meta'][0], tabs['_meta'][1]))
        self.assertEqual(meta['lastSaved'], '2024-02-01T00:00:00.000+00:00')
        self.assertEqual(meta['title'], 'Home')

    def test_orphan_transactions_are_skipped(self):
        state = dataclasses.replace(
            self.state, transactions=self.state.transactions + (make_transaction('gone', id='t9'),))
        with self.assertLogs(level='WARNING'):
            tabs = tabular.to_tabs(state)
        ids = [row[0] for name, rows in tabs.items() if tabular.is_transaction_tab(name) for row in rows[1:]]
        self.assertNotIn('t9', ids)

    def test_round_trip_preserves_collections(self):
        payload = tabular.from_tabs(tabular.to_tabs(self.state))
        self.assertEqual(payload['metadata'], self.state.metadata)
        self.assertEqual(payload['accounts'], self.state.accounts)
        self.assertEqual(payload['payees'], self.state.payees)
        self.assertEqual(payload['categories'], self.state.categories)
        self.assertEqual(payload['reconciliations'], self.state.reconciliations)
        self.assertEqual(
            sorted(t.id for t in payload['transactions']),
            ['t1', 't2', 't3'],
        )
        t2 = next(t for t in payload['transactions'] if t.id == 't2')
        self.assertTrue(t2.cleared)
        self.assertEqual(t2.deposit, '100.00')

    def test_round_trip_is_exact(self):
        account = make_account('Chk', id='a1', nickname=' ', address=' 12 Main St ', phone='555 ')
        state = State(
            metadata=model.Metadata(title=' Home ', owner='Sam'),
            accounts=(account,),
            transactions=(
                make_transaction('a1', id='t2', payment='12.50', payee=' Grocer', description='weekly  shop ',
                                 check_num=' 0042'),
                make_transaction('a1', id='t1', deposit='100.00', cleared=True, reconciliation_id='r1'),
                make_transaction('a1', id='t3', date='2024-01-02', deposit='3.00', category='Food '),
            ),
            reconciliations=(model.Reconciliation(
                id='r1', account_id='a1', date='2024-01-31', statement_opening_balance='0.00',
                statement_closing_balance='100.00', transaction_ids=('t1',)),),
        )

        payload = tabular.from_tabs(tabular.to_tabs(state))

        self.assertEqual(payload['metadata'], state.metadata)
        self.assertEqual(payload['accounts'], state.accounts)
        self.assertEqual(payload['reconciliations'], state.reconciliations)
        self.assertEqual(
            sorted(payload['transactions'], key=lambda t: t.id),
            sorted(state.transactions, key=lambda t: t.id),
        )


class ParsingTests(unittest.TestCase):
    def test_missing_tabs_yield_empty_collections(self):
        payload = tabular.from_tabs({})
        self.assertEqual(payload['metadata'], model.Metadata())
        for key in ('accounts', 'payees', 'categories', 'reconciliations', 'transactions'):
            self.assertEqual(payload[key], ())

    def test_blank_rows_skipped_and_short_rows_padded(self):
        raw = {
            'accounts': [
                ['id', 'name', 'type'],
                ['a1', 'Checking'],
                ['', '', ''],
                [],
            ],
        }
        payload = tabular.from_tabs(raw)
        self.assertEqual(len(payload['accounts']), 1)
        self.assertEqual(payload['accounts'][0].type, '')

    def test_transactions_are_gathered_from_every_transaction_tab(self):
        headers = ['id', 'accountId', 'date', 'payment']
        raw = {
            'txn_Old name': [headers, ['t1', 'a1', '2024-01-01', '1.00']],
            'txn_Other': [headers, ['t2', 'a2', '2024-01-02', '2.00']],
            'notes': [['id'], ['ignored']],
        }
        payload = tabular.from_tabs(raw)
        self.assertEqual({t.account_id for t in payload['transactions']}, {'a1', 'a2'})

    def test_header_rows_cover_fixed_tabs(self):
        rows = tabular.header_rows()
        self.assertEqual(list(rows), list(tabular.fixed_tab_names()))
        self.assertEqual(rows['payees'], [['id', 'name']])


if __name__ == '__main__':
    unittest.main()
