"""Mapping between the normalized model and the named tabs of a document.

The document holds five fixed tabs, each with a header row followed by one row per record, and
one ``txn_`` tab per account holding that account's transactions. Transaction tabs are rebuilt
on every save, so their names only need to be unique and reproducible from the account list.

"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type

from . import model

TXN_TAB_PREFIX: str = 'txn_'
MAX_TAB_NAME_LENGTH: int = 100
ILLEGAL_TAB_CHARS: str = '\\/*?[]'

META_TAB: str = '_meta'
ACCOUNTS_TAB: str = 'accounts'
PAYEES_TAB: str = 'payees'
CATEGORIES_TAB: str = 'categories'
RECONCILIATIONS_TAB: str = 'reconciliations'

FIXED_TABS: Dict[str, Type[model.Record]] = {
    META_TAB: model.Metadata,
    ACCOUNTS_TAB: model.Account,
    PAYEES_TAB: model.Payee,
    CATEGORIES_TAB: model.Category,
    RECONCILIATIONS_TAB: model.Reconciliation,
}

# State attribute holding each fixed tab's collection
TAB_COLLECTIONS: Dict[str, str] = {
    ACCOUNTS_TAB: 'accounts',
    PAYEES_TAB: 'payees',
    CATEGORIES_TAB: 'categories',
    RECONCILIATIONS_TAB: 'reconciliations',
}

TRANSACTION_HEADERS: List[str] = model.Transaction.headers()

Rows = List[List[str]]


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def quote_tab_name(name: str) -> str:
    """Quote a tab name for use in an A1 range."""
    return "'" + name.replace("'", "''") + "'"


def a1_range(tab: str, rows: Optional[int] = None, columns: Optional[int] = None) -> str:
    """Return the A1 range of a tab.

    Without dimensions the range covers the whole tab, otherwise it spans ``A1`` to the last
    column and row given.
    """
    if not rows or not columns:
        return quote_tab_name(tab)
    return f'{quote_tab_name(tab)}!A1:{idx_to_col(columns - 1)}{rows}'


def is_transaction_tab(name: str) -> bool:
    return name.startswith(TXN_TAB_PREFIX)


def sanitize_tab_name(name: str) -> str:
    """Remove the characters a tab title may not contain."""
    return ''.join(c for c in name if c not in ILLEGAL_TAB_CHARS)


def _compose(base: str, suffix: str = '') -> str:
    room = MAX_TAB_NAME_LENGTH - len(TXN_TAB_PREFIX) - len(suffix)
    return f'{TXN_TAB_PREFIX}{base[:room]}{suffix}'


def assign_tab_names(accounts: Sequence[model.Account]) -> List[str]:
    """Return the transaction tab name of each account, in account order.

    Accounts whose names collide, ignoring case, are all suffixed with the first four
    characters of their id. Any clash that survives is broken by appending a counter.

    Args:
        accounts: The ordered accounts.

    Returns:
        list[str]: One unique tab name per account.
    """
    bases = [sanitize_tab_name(a.name) or a.id for a in accounts]
    plain = [_compose(b) for b in bases]

    counts: Dict[str, int] = {}
    for name in plain:
        counts[name.casefold()] = counts.get(name.casefold(), 0) + 1

    names: List[str] = []
    seen: set = set()
    for account, base, name in zip(accounts, bases, plain):
        if counts[name.casefold()] > 1:
            name = _compose(base, f' ({account.id[:4]})')

        candidate = name
        n = 2
        while candidate.casefold() in seen:
            extra = f' {n}'
            candidate = name[:MAX_TAB_NAME_LENGTH - len(extra)] + extra
            n += 1

        seen.add(candidate.casefold())
        names.append(candidate)
    return names


def header_rows() -> Dict[str, Rows]:
    """Return the header-only contents of every fixed tab."""
    return {tab: [cls.headers()] for tab, cls in FIXED_TABS.items()}


def _format_amount(value: str) -> str:
    if not value:
        return ''
    try:
        return f'{Decimal(value):.2f}'
    except InvalidOperation:
        logging.warning(f'Writing unparseable amount "{value}" unchanged.')
        return value


def _transaction_row(transaction: model.Transaction) -> List[str]:
    return transaction.replace(
        payment=_format_amount(transaction.payment),
        deposit=_format_amount(transaction.deposit),
    ).to_row()


def to_tabs(state: Any, saved_at: Optional[str] = None) -> Dict[str, Rows]:
    """Serialize the state's collections to tabs.

    Args:
        state: An object exposing ``metadata`` and the entity collections.
        saved_at (str, optional): When given, stamped into the metadata's lastSaved.

    Returns:
        dict: Tab name to rows, headers first. Fixed tabs come first in their declared order,
            followed by one transaction tab per account in account order.
    """
    metadata: model.Metadata = state.metadata
    if saved_at:
        metadata = metadata.replace(last_saved=saved_at)

    tabs: Dict[str, Rows] = {META_TAB: [model.Metadata.headers(), metadata.to_row()]}
    for tab, attr in TAB_COLLECTIONS.items():
        cls = FIXED_TABS[tab]
        tabs[tab] = [cls.headers()] + [record.to_row() for record in getattr(state, attr)]

    partitions: Dict[str, Rows] = {a.id: [] for a in state.accounts}
    for transaction in state.transactions:
        if transaction.account_id not in partitions:
            logging.warning(
                f'Skipping transaction "{transaction.id}": account "{transaction.account_id}" no longer exists.'
            )
            continue
        partitions[transaction.account_id].append(_transaction_row(transaction))

    for account, name in zip(state.accounts, assign_tab_names(state.accounts)):
        tabs[name] = [list(TRANSACTION_HEADERS)] + partitions[account.id]

    logging.debug(f'Serialized {len(tabs)} tabs ({len(state.accounts)} transaction tabs).')
    return tabs


def _records(rows: Optional[Sequence[Sequence[Any]]]) -> List[Dict[str, str]]:
    """Key each data row by the header row, skipping blank rows and padding short ones."""
    if not rows:
        return []
    headers = [str(h).strip() for h in rows[0]]
    records = []
    for row in rows[1:]:
        cells = ['' if c is None else str(c) for c in row]
        if not any(c.strip() for c in cells):
            continue
        cells += [''] * (len(headers) - len(cells))
        records.append({h: cells[i] for i, h in enumerate(headers) if h})
    return records


def from_tabs(raw: Mapping[str, Sequence[Sequence[Any]]]) -> Dict[str, Any]:
    """Parse tabs read from a document into a data payload.

    Every ``txn_`` tab is merged into a single transaction list; account affiliation comes
    from the accountId column alone. Missing or empty tabs yield empty collections.

    Args:
        raw: Tab name to rows, headers first.

    Returns:
        dict: ``metadata`` and one tuple per entity collection.
    """
    meta = _records(raw.get(META_TAB))
    payload: Dict[str, Any] = {
        'metadata': model.Metadata.from_row(meta[0]) if meta else model.Metadata(),
    }
    for tab, attr in TAB_COLLECTIONS.items():
        cls = FIXED_TABS[tab]
        payload[attr] = tuple(cls.from_row(r) for r in _records(raw.get(tab)))

    transactions: List[model.Transaction] = []
    for name, rows in raw.items():
        if not is_transaction_tab(name):
            continue
        transactions.extend(model.Transaction.from_row(r) for r in _records(rows))
    payload['transactions'] = tuple(transactions)

    logging.debug(
        f'Parsed {len(payload["accounts"])} accounts and {len(transactions)} transactions.'
    )
    return payload


def fixed_tab_names() -> Iterable[str]:
    return FIXED_TABS.keys()
