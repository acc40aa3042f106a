"""Application state store.

The state is an immutable :class:`State`. Every change is expressed as an :class:`Action` and
applied by the pure :func:`reduce` function. :class:`AppStore` wraps the reducer, validates
input before anything is dispatched, feeds data mutations to the autosave tracker, and
orchestrates loading and saving documents through the remote store client.

"""
import dataclasses
import datetime
import enum
import itertools
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from PySide6 import QtCore

from . import importer, model, reconcile, tabular
from .autosave import AutoSaveStatus, AutoSaveTracker
from ..status import status


@dataclasses.dataclass(frozen=True)
class State:
    authenticated: bool = False
    document_id: str = ''
    document_title: str = ''
    metadata: model.Metadata = dataclasses.field(default_factory=model.Metadata)
    accounts: Tuple[model.Account, ...] = ()
    transactions: Tuple[model.Transaction, ...] = ()
    payees: Tuple[model.Payee, ...] = ()
    categories: Tuple[model.Category, ...] = ()
    reconciliations: Tuple[model.Reconciliation, ...] = ()
    selected_account_id: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    save_status: AutoSaveStatus = dataclasses.field(default_factory=AutoSaveStatus)
    last_entry_date: str = ''


class ActionType(enum.StrEnum):
    SetAuth = enum.auto()
    SetLoading = enum.auto()
    SetError = enum.auto()
    SetDocument = enum.auto()
    LoadData = enum.auto()
    ClearData = enum.auto()
    SelectAccount = enum.auto()

    AddAccount = enum.auto()
    UpdateAccount = enum.auto()
    DeleteAccount = enum.auto()

    AddTransaction = enum.auto()
    UpdateTransaction = enum.auto()
    DeleteTransaction = enum.auto()
    ImportTransactions = enum.auto()
    UpdateTransactionsBatch = enum.auto()

    AddPayee = enum.auto()
    UpdatePayee = enum.auto()
    DeletePayee = enum.auto()

    AddCategory = enum.auto()
    UpdateCategory = enum.auto()
    DeleteCategory = enum.auto()

    AddReconciliation = enum.auto()

    SetMetadata = enum.auto()
    SetSaveStatus = enum.auto()


DATA_ACTIONS: frozenset = frozenset({
    ActionType.AddAccount, ActionType.UpdateAccount, ActionType.DeleteAccount,
    ActionType.AddTransaction, ActionType.UpdateTransaction, ActionType.DeleteTransaction,
    ActionType.ImportTransactions, ActionType.UpdateTransactionsBatch,
    ActionType.AddPayee, ActionType.UpdatePayee, ActionType.DeletePayee,
    ActionType.AddCategory, ActionType.UpdateCategory, ActionType.DeleteCategory,
    ActionType.AddReconciliation,
    ActionType.SetMetadata,
})


@dataclasses.dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Any = None


def _replace_by_id(items: Tuple[Any, ...], item: Any) -> Tuple[Any, ...]:
    return tuple(item if i.id == item.id else i for i in items)


def _remove_by_id(items: Tuple[Any, ...], item_id: str) -> Tuple[Any, ...]:
    return tuple(i for i in items if i.id != item_id)


def _load_data(state: State, payload: Mapping[str, Any]) -> State:
    accounts = tuple(payload.get('accounts', ()))
    selected = state.selected_account_id
    if selected and not any(a.id == selected for a in accounts):
        selected = None
    return dataclasses.replace(
        state,
        metadata=payload.get('metadata') or model.Metadata(),
        accounts=accounts,
        transactions=tuple(payload.get('transactions', ())),
        payees=tuple(payload.get('payees', ())),
        categories=tuple(payload.get('categories', ())),
        reconciliations=tuple(payload.get('reconciliations', ())),
        selected_account_id=selected,
        loading=False,
    )


def _clear_data(state: State) -> State:
    return dataclasses.replace(
        state,
        metadata=model.Metadata(),
        accounts=(),
        transactions=(),
        payees=(),
        categories=(),
        reconciliations=(),
        selected_account_id=None,
        document_id='',
        document_title='',
    )


def _delete_account(state: State, account_id: str) -> State:
    return dataclasses.replace(
        state,
        accounts=_remove_by_id(state.accounts, account_id),
        transactions=tuple(t for t in state.transactions if t.account_id != account_id),
        selected_account_id=None if state.selected_account_id == account_id else state.selected_account_id,
    )


def _select_account(state: State, account_id: Optional[str]) -> State:
    if not any(a.id == account_id for a in state.accounts):
        account_id = None
    return dataclasses.replace(state, selected_account_id=account_id)


def _update_batch(state: State, updates: Sequence[Mapping[str, Any]]) -> State:
    by_id: Dict[str, Dict[str, Any]] = {}
    for update in updates:
        changes = model.normalize_changes(model.Transaction, update)
        by_id.setdefault(changes.pop('id'), {}).update(changes)
    return dataclasses.replace(state, transactions=tuple(
        t.replace(**by_id[t.id]) if t.id in by_id else t
        for t in state.transactions
    ))


_REDUCERS: Dict[ActionType, Callable[[State, Any], State]] = {
    ActionType.SetAuth: lambda s, p: dataclasses.replace(s, authenticated=bool(p)),
    ActionType.SetLoading: lambda s, p: dataclasses.replace(s, loading=bool(p)),
    ActionType.SetError: lambda s, p: dataclasses.replace(s, error=p),
    ActionType.SetDocument: lambda s, p: dataclasses.replace(
        s, document_id=p.get('id') or '', document_title=p.get('title') or ''),
    ActionType.LoadData: _load_data,
    ActionType.ClearData: lambda s, p: _clear_data(s),
    ActionType.SelectAccount: _select_account,

    ActionType.AddAccount: lambda s, p: dataclasses.replace(s, accounts=s.accounts + (p,)),
    ActionType.UpdateAccount: lambda s, p: dataclasses.replace(s, accounts=_replace_by_id(s.accounts, p)),
    ActionType.DeleteAccount: _delete_account,

    ActionType.AddTransaction: lambda s, p: dataclasses.replace(
        s, transactions=s.transactions + (p,), last_entry_date=p.date),
    ActionType.UpdateTransaction: lambda s, p: dataclasses.replace(
        s, transactions=_replace_by_id(s.transactions, p)),
    ActionType.DeleteTransaction: lambda s, p: dataclasses.replace(
        s, transactions=_remove_by_id(s.transactions, p)),
    ActionType.ImportTransactions: lambda s, p: dataclasses.replace(
        s, transactions=s.transactions + tuple(p)),
    ActionType.UpdateTransactionsBatch: _update_batch,

    ActionType.AddPayee: lambda s, p: dataclasses.replace(s, payees=s.payees + (p,)),
    ActionType.UpdatePayee: lambda s, p: dataclasses.replace(s, payees=_replace_by_id(s.payees, p)),
    ActionType.DeletePayee: lambda s, p: dataclasses.replace(s, payees=_remove_by_id(s.payees, p)),

    ActionType.AddCategory: lambda s, p: dataclasses.replace(s, categories=s.categories + (p,)),
    ActionType.UpdateCategory: lambda s, p: dataclasses.replace(
        s, categories=_replace_by_id(s.categories, p)),
    ActionType.DeleteCategory: lambda s, p: dataclasses.replace(
        s, categories=_remove_by_id(s.categories, p)),

    ActionType.AddReconciliation: lambda s, p: dataclasses.replace(
        s, reconciliations=s.reconciliations + (p,)),

    ActionType.SetMetadata: lambda s, p: dataclasses.replace(
        s, metadata=s.metadata.replace(**model.normalize_changes(model.Metadata, p))),
    ActionType.SetSaveStatus: lambda s, p: dataclasses.replace(s, save_status=p),
}


def reduce(state: State, action: Action) -> State:
    """Return the state that results from applying ``action`` to ``state``.

    Unknown actions return ``state`` unchanged.
    """
    handler = _REDUCERS.get(action.type)
    if handler is None:
        logging.warning(f'Ignoring unknown action: {action.type}')
        return state
    return handler(state, action.payload)


# Derived views

def running_balances(transactions: Iterable[model.Transaction],
                     account_id: str) -> List[Tuple[model.Transaction, Decimal]]:
    """Return the account's transactions ordered by date with the balance after each.

    Transactions on the same date keep their insertion order.
    """
    ordered = sorted((t for t in transactions if t.account_id == account_id), key=lambda t: t.date)
    balances = itertools.accumulate(t.amount for t in ordered)
    return list(zip(ordered, balances))


def account_balance(transactions: Iterable[model.Transaction], account_id: str) -> Decimal:
    return sum((t.amount for t in transactions if t.account_id == account_id), Decimal('0.00'))


def account_transactions(state: State, account_id: str, payee: str = '', category: str = '',
                         sort_by: str = 'date', descending: bool = False) -> List[model.Transaction]:
    """Return an account's transactions filtered by payee and category and sorted by a field.

    Filters match ignoring case. ``sort_by`` is a field or column name; ``amount`` sorts by the
    signed amount.
    """
    items = [t for t in state.transactions if t.account_id == account_id]
    if payee:
        items = [t for t in items if t.payee.casefold() == payee.casefold()]
    if category:
        items = [t for t in items if t.category.casefold() == category.casefold()]

    if sort_by == 'amount':
        key = lambda t: t.amount
    else:
        name = model.field_name(model.Transaction, sort_by)
        key = lambda t: getattr(t, name)
    return sorted(items, key=key, reverse=descending)


def display_name(account: model.Account) -> str:
    return account.display_name


find_account = model.find_account


class AppStore(QtCore.QObject):
    """Holds the application state and orchestrates document operations.

    Args:
        client: The remote store client, usually a :class:`service.SheetsClient`.
        tracker (AutoSaveTracker): The autosave tracker marked dirty by data mutations.

    Signals:
        stateChanged (State): Emitted after every applied action.
    """
    stateChanged = QtCore.Signal(object)

    def __init__(self, client: Any, tracker: AutoSaveTracker, parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)
        self.client = client
        self.tracker = tracker
        self._state = State(save_status=tracker.status())
        self._busy = False
        self._unsubscribe = tracker.subscribe(
            lambda s: self._apply(Action(ActionType.SetSaveStatus, s))
        )

    @property
    def state(self) -> State:
        return self._state

    def dispose(self) -> None:
        self._unsubscribe()

    def _apply(self, action: Action) -> State:
        self._state = reduce(self._state, action)
        self.stateChanged.emit(self._state)
        return self._state

    def dispatch(self, action: Action) -> State:
        """Apply ``action``. Data mutations mark the document dirty."""
        state = self._apply(action)
        if action.type in DATA_ACTIONS:
            self.tracker.mark_dirty()
        return state

    # Lookups

    def _get(self, items: Iterable[Any], item_id: str, label: str) -> Any:
        item = next((i for i in items if i.id == item_id), None)
        if item is None:
            raise status.ValidationException(f'Unknown {label}: "{item_id}".')
        return item

    def default_entry_date(self) -> str:
        """The date to prefill a new transaction with: the last date entered, else today."""
        return self._state.last_entry_date or datetime.date.today().isoformat()

    def balances(self, account_id: str) -> List[Tuple[model.Transaction, Decimal]]:
        return running_balances(self._state.transactions, account_id)

    # Accounts

    def set_authenticated(self, value: bool) -> None:
        self._apply(Action(ActionType.SetAuth, value))

    def select_account(self, account_id: Optional[str]) -> Optional[str]:
        """Select an account. Unknown ids clear the selection.

        Returns:
            The selected account id, or None.
        """
        return self._apply(Action(ActionType.SelectAccount, account_id)).selected_account_id

    def add_account(self, name: str, nickname: str = '', address: str = '', phone: str = '',
                    web_address: str = '', type: str = model.AccountType.Checking.value) -> model.Account:
        account = model.validate_account(model.Account(
            id=model.new_id(),
            name=name,
            nickname=nickname,
            address=address,
            phone=phone,
            web_address=web_address,
            type=type,
            created_at=model.now_str(),
        ))
        self.dispatch(Action(ActionType.AddAccount, account))
        return account

    def update_account(self, account_id: str, **changes: Any) -> model.Account:
        current = self._get(self._state.accounts, account_id, 'account')
        changes = model.normalize_changes(model.Account, changes)
        changes.pop('id', None)
        account = model.validate_account(current.replace(**changes))
        self.dispatch(Action(ActionType.UpdateAccount, account))
        return account

    def delete_account(self, account_id: str) -> None:
        """Delete an account together with all of its transactions."""
        self._get(self._state.accounts, account_id, 'account')
        self.dispatch(Action(ActionType.DeleteAccount, account_id))

    # Payees and categories

    def _ensure_named(self, name: str, items: Sequence[Any], cls: type, action_type: ActionType) -> None:
        if not name or model.find_by_name(items, name):
            return
        logging.debug(f'Creating {cls.__name__.lower()} "{name}".')
        self.dispatch(Action(action_type, cls(id=model.new_id(), name=name)))

    def _ensure_payee_and_category(self, transaction: model.Transaction) -> None:
        self._ensure_named(transaction.payee, self._state.payees, model.Payee, ActionType.AddPayee)
        self._ensure_named(transaction.category, self._state.categories, model.Category, ActionType.AddCategory)

    def add_payee(self, name: str) -> model.Payee:
        payee = model.Payee(id=model.new_id(), name=model.validate_unique_name(self._state.payees, name, 'payee'))
        self.dispatch(Action(ActionType.AddPayee, payee))
        return payee

    def update_payee(self, payee_id: str, name: str) -> model.Payee:
        current = self._get(self._state.payees, payee_id, 'payee')
        payee = current.replace(
            name=model.validate_unique_name(self._state.payees, name, 'payee', exclude_id=payee_id))
        self.dispatch(Action(ActionType.UpdatePayee, payee))
        return payee

    def delete_payee(self, payee_id: str) -> None:
        self._get(self._state.payees, payee_id, 'payee')
        self.dispatch(Action(ActionType.DeletePayee, payee_id))

    def add_category(self, name: str) -> model.Category:
        category = model.Category(
            id=model.new_id(), name=model.validate_unique_name(self._state.categories, name, 'category'))
        self.dispatch(Action(ActionType.AddCategory, category))
        return category

    def update_category(self, category_id: str, name: str) -> model.Category:
        current = self._get(self._state.categories, category_id, 'category')
        category = current.replace(
            name=model.validate_unique_name(self._state.categories, name, 'category', exclude_id=category_id))
        self.dispatch(Action(ActionType.UpdateCategory, category))
        return category

    def delete_category(self, category_id: str) -> None:
        self._get(self._state.categories, category_id, 'category')
        self.dispatch(Action(ActionType.DeleteCategory, category_id))

    # Transactions

    def add_transaction(self, account_id: str, date: str, payee: str = '', description: str = '',
                        payment: Any = '', deposit: Any = '', category: str = '', check_num: str = '',
                        cleared: bool = False) -> model.Transaction:
        """Validate and add a transaction.

        Unseen payee and category names are added to their lists.

        Raises:
            status.ValidationException: If any field is invalid.
        """
        transaction = model.validate_transaction(model.Transaction(
            id=model.new_id(),
            account_id=account_id,
            date=date,
            check_num=check_num,
            payee=payee,
            description=description,
            payment='' if payment is None else str(payment),
            deposit='' if deposit is None else str(deposit),
            category=category,
            cleared=model.coerce_bool(cleared, label='cleared'),
        ), self._state.accounts)
        self.dispatch(Action(ActionType.AddTransaction, transaction))
        self._ensure_payee_and_category(transaction)
        return transaction

    def update_transaction(self, transaction_id: str, **changes: Any) -> model.Transaction:
        """Validate and apply a partial update to a transaction.

        Raises:
            status.ValidationException: If a field is invalid, or the change would alter the
                cleared state or reconciliation of a reconciled transaction.
        """
        current = self._get(self._state.transactions, transaction_id, 'transaction')
        changes = model.normalize_changes(model.Transaction, changes)
        changes.pop('id', None)
        if current.reconciliation_id and any(
                k in changes and changes[k] != getattr(current, k) for k in ('cleared', 'reconciliation_id')):
            raise status.ValidationException('A reconciled transaction cannot be uncleared or detached.')
        transaction = model.validate_transaction(current.replace(**changes), self._state.accounts)
        self.dispatch(Action(ActionType.UpdateTransaction, transaction))
        self._ensure_payee_and_category(transaction)
        return transaction

    def toggle_cleared(self, transaction_id: str) -> model.Transaction:
        """Flip a transaction's cleared flag.

        Raises:
            status.ValidationException: If the transaction was cleared by a reconciliation.
        """
        current = self._get(self._state.transactions, transaction_id, 'transaction')
        if current.reconciliation_id:
            raise status.ValidationException('A reconciled transaction cannot be uncleared.')
        transaction = current.replace(cleared=not current.cleared)
        self.dispatch(Action(ActionType.UpdateTransaction, transaction))
        return transaction

    def delete_transaction(self, transaction_id: str) -> None:
        self._get(self._state.transactions, transaction_id, 'transaction')
        self.dispatch(Action(ActionType.DeleteTransaction, transaction_id))

    def set_metadata(self, **changes: Any) -> model.Metadata:
        changes = model.normalize_changes(model.Metadata, changes)
        self.dispatch(Action(ActionType.SetMetadata, changes))
        return self._state.metadata

    # Import, export and reconciliation

    def import_transactions(self, rows: Sequence[Mapping[str, Any]],
                            column_map: Optional[Mapping[str, str]] = None,
                            default_account_id: Optional[str] = None) -> List[model.Transaction]:
        """Import parsed rows as transactions, all or nothing.

        Args:
            rows: Parsed rows keyed by source column.
            column_map: Source column to transaction field. Guessed from the column names of
                the first row when omitted.
            default_account_id (str, optional): Account for rows without an account cell.
                Defaults to the selected account.

        Raises:
            status.ImportAbortedException: If any account name cannot be resolved.
            status.ValidationException: If any row is invalid.
        """
        if column_map is None:
            column_map = importer.auto_map_columns(rows[0].keys() if rows else ())
        if default_account_id is None:
            default_account_id = self._state.selected_account_id or ''

        transactions = importer.build_import(rows, column_map, self._state.accounts, default_account_id)
        if transactions:
            self.dispatch(Action(ActionType.ImportTransactions, transactions))
        logging.info(f'Imported {len(transactions)} transactions.')
        return transactions

    def export_transactions(self, account_id: Optional[str] = None, fmt: str = 'csv',
                            title: Optional[str] = None, date_range: Optional[str] = None) -> str:
        return importer.export_text(self._state, account_id=account_id, fmt=fmt, title=title,
                                    date_range=date_range)

    def compute_reconciliation(self, account_id: str, opening: Any, closing: Any,
                               selected_ids: Iterable[str] = ()) -> reconcile.ReconciliationResult:
        self._get(self._state.accounts, account_id, 'account')
        return reconcile.compute(self._state.transactions, account_id, opening, closing, selected_ids)

    def reconcile(self, account_id: str, opening: Any, closing: Any, selected_ids: Iterable[str],
                  date: str = '') -> model.Reconciliation:
        """Reconcile an account against a statement and clear the selected transactions.

        Raises:
            status.ValidationException: If the selection does not balance.
        """
        result = self.compute_reconciliation(account_id, opening, closing, selected_ids)
        record, updates = reconcile.commit(result, date=date)
        self.dispatch(Action(ActionType.AddReconciliation, record))
        self.dispatch(Action(ActionType.UpdateTransactionsBatch, updates))
        return record

    # Document orchestration

    def _begin(self, operation: str) -> bool:
        if self._busy or self.tracker.is_saving:
            logging.warning(f'Cannot {operation} while another document operation is running.')
            return False
        self._busy = True
        self._apply(Action(ActionType.SetLoading, True))
        self._apply(Action(ActionType.SetError, None))
        return True

    def _end(self) -> None:
        self._busy = False
        self._apply(Action(ActionType.SetLoading, False))

    def _fail(self, ex: status.BaseStatusException) -> bool:
        self._apply(Action(ActionType.SetError, str(ex)))
        return False

    def _switch_document(self, document_id: str, title: str) -> None:
        from ..settings import lib
        from ..ui.actions import signals

        self._apply(Action(ActionType.SetDocument, {'id': document_id, 'title': title}))
        lib.settings.remember_document(document_id, title)
        signals.documentChanged.emit(document_id, title)

    def load(self, document_id: str) -> bool:
        """Load a document, replacing the collections.

        On failure the error is recorded and the collections are left untouched.

        Returns:
            bool: True on success.
        """
        if not self._begin('load'):
            return False
        try:
            payload = tabular.from_tabs(self.client.read_all_tabs(document_id))
            title = payload['metadata'].title or self.client.get_title(document_id)
        except status.BaseStatusException as ex:
            return self._fail(ex)
        finally:
            self._end()

        self._apply(Action(ActionType.LoadData, payload))
        self._switch_document(document_id, title)
        self.tracker.mark_clean()

        from ..ui.actions import signals
        signals.dataLoaded.emit()
        logging.info(f'Loaded "{title}" ({document_id}).')
        return True

    def write(self) -> bool:
        """Write the state to the active document, creating one if needed.

        This is the save routine handed to the autosave tracker; use :meth:`save` to save.

        Returns:
            bool: True on success.
        """
        from ..settings import lib

        state = self._state
        if not state.authenticated:
            logging.debug('Not signed in, skipping save.')
            return False
        if self._busy:
            logging.warning('Cannot save while another document operation is running.')
            return False

        self._apply(Action(ActionType.SetLoading, True))
        try:
            document_id = state.document_id
            if not document_id:
                title = state.metadata.title or lib.app_title
                document_id = self.client.create_document(title)
                self._apply(Action(ActionType.SetMetadata, {'title': title}))
                self._switch_document(document_id, title)

            saved_at = model.now_str()
            self.client.write_all_tabs(document_id, tabular.to_tabs(self._state, saved_at=saved_at))
        except status.BaseStatusException as ex:
            return self._fail(ex)
        finally:
            self._apply(Action(ActionType.SetLoading, False))

        self._apply(Action(ActionType.SetMetadata, {'last_saved': saved_at}))
        logging.info(f'Saved document {document_id}.')
        return True

    def save(self) -> bool:
        """Save through the tracker's single-flight save routine.

        Returns:
            bool: False when not signed in, on failure, or when queued behind a running save.
        """
        if not self._state.authenticated:
            return False
        return self.tracker.save_now()

    def create_new(self, title: str, owner: Optional[str] = None) -> bool:
        """Create an empty document and make it the active one.

        The owner defaults to the one stored in the settings. The local collections are only
        reset once the document has been created and written.
        """
        if owner is None:
            from ..settings import lib
            owner = lib.settings['owner'] or ''
        if not self._begin('create a document'):
            return False
        try:
            metadata = model.Metadata(title=title, owner=owner, last_saved=model.now_str())
            document_id = self.client.create_document(title)
            self.client.write_all_tabs(document_id, tabular.to_tabs(State(metadata=metadata)))
        except status.BaseStatusException as ex:
            return self._fail(ex)
        finally:
            self._end()

        self._apply(Action(ActionType.ClearData))
        self._apply(Action(ActionType.SetMetadata, dataclasses.asdict(metadata)))
        self._switch_document(document_id, title)
        self.tracker.mark_clean()
        logging.info(f'Created "{title}" ({document_id}).')
        return True

    def save_as(self, title: str) -> bool:
        """Write the state to a new document, then make it the active one.

        The previous document is left untouched.
        """
        if not self._begin('save as'):
            return False
        try:
            document_id = self.client.create_document(title)
            saved_at = model.now_str()
            copy = dataclasses.replace(self._state, metadata=self._state.metadata.replace(title=title))
            self.client.write_all_tabs(document_id, tabular.to_tabs(copy, saved_at=saved_at))
        except status.BaseStatusException as ex:
            return self._fail(ex)
        finally:
            self._end()

        self._apply(Action(ActionType.SetMetadata, {'title': title, 'last_saved': saved_at}))
        self._switch_document(document_id, title)
        self.tracker.mark_clean()
        logging.info(f'Saved a copy as "{title}" ({document_id}).')
        return True
