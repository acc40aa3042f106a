"""Bulk import and export of transactions.

Imports are all-or-nothing. A first pass resolves the account of every row and aborts the batch
if any account name is unknown; a second pass builds and validates every transaction and aborts
if any row is invalid. Nothing is returned until the whole batch is valid.

"""
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from . import codec, model
from ..status import status

# Matched in order against the lowercased source column name; the first hit wins
FIELD_KEYWORDS: List[tuple] = [
    ('date', 'date'),
    ('check', 'check_num'),
    ('payee', 'payee'),
    ('description', 'description'),
    ('payment', 'payment'),
    ('deposit', 'deposit'),
    ('category', 'category'),
    ('cleared', 'cleared'),
    ('account', 'account'),
]

IMPORT_FIELDS: List[str] = [f for _, f in FIELD_KEYWORDS]

EXPORT_COLUMNS: List[str] = [
    'Date', 'Account', 'Check #', 'Payee', 'Description', 'Payment', 'Deposit', 'Category', 'Cleared',
]

TRUTHY: frozenset = frozenset({'TRUE', 'YES', 'Y', 'X', '1', 'C', 'R', 'CLEARED'})


def auto_map_columns(columns: Iterable[str]) -> Dict[str, str]:
    """Guess the transaction field of each source column by its name.

    Columns that match nothing are left out.

    Returns:
        dict: Source column to field name.
    """
    mapping = {}
    for column in columns:
        lower = column.lower()
        field = next((f for keyword, f in FIELD_KEYWORDS if keyword in lower), None)
        if field:
            mapping[column] = field
    logging.debug(f'Auto-mapped {len(mapping)} of the source columns: {mapping}')
    return mapping


def _values(row: Mapping[str, Any], column_map: Mapping[str, str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for column, field in column_map.items():
        if not field:
            continue
        if field not in IMPORT_FIELDS:
            raise status.ValidationException(f'Unknown import field: "{field}".')
        cell = row.get(column)
        if cell is not None:
            values[field] = str(cell).strip()
    return values


def _clean_amount(value: str) -> str:
    return re.sub(r'[$,\s]', '', value)


def build_import(rows: Sequence[Mapping[str, Any]], column_map: Mapping[str, str],
                 accounts: Sequence[model.Account], default_account_id: str = '',
                 id_factory: Callable[[], str] = model.new_id) -> List[model.Transaction]:
    """Build validated transactions from parsed rows.

    Args:
        rows: Parsed rows keyed by source column.
        column_map: Source column to transaction field.
        accounts: The existing accounts.
        default_account_id (str): Used for rows without an account cell.
        id_factory: Produces transaction ids.

    Returns:
        list[Transaction]: One transaction per row.

    Raises:
        status.ImportAbortedException: If any account name cannot be resolved.
        status.ValidationException: If any row is invalid.
    """
    parsed = [_values(row, column_map) for row in rows]

    account_ids: List[str] = []
    unresolved: List[str] = []
    for values in parsed:
        name = values.get('account', '')
        if not name:
            account_ids.append(default_account_id)
            continue
        account = model.find_account(accounts, name)
        if account is None:
            unresolved.append(name)
            account_ids.append('')
        else:
            account_ids.append(account.id)
    if unresolved:
        raise status.ImportAbortedException(unresolved)

    transactions: List[model.Transaction] = []
    errors: List[str] = []
    for i, (values, account_id) in enumerate(zip(parsed, account_ids), start=1):
        transaction = model.Transaction(
            id=id_factory(),
            account_id=account_id,
            date=values.get('date', ''),
            check_num=values.get('check_num', ''),
            payee=values.get('payee', ''),
            description=values.get('description', ''),
            payment=_clean_amount(values.get('payment', '')),
            deposit=_clean_amount(values.get('deposit', '')),
            category=values.get('category', ''),
            cleared=values.get('cleared', '').upper() in TRUTHY,
        )
        try:
            transactions.append(model.validate_transaction(transaction, accounts))
        except status.ValidationException as ex:
            errors.append(f'row {i}: {ex.detail}')

    if errors:
        raise status.ValidationException(f'Import rejected. {"; ".join(errors)}')

    logging.debug(f'Built {len(transactions)} transactions for import.')
    return transactions


def export_rows(state: Any, account_id: Optional[str] = None) -> List[Dict[str, str]]:
    """Return transactions as export rows ordered by date.

    Args:
        state: An object exposing ``accounts`` and ``transactions``.
        account_id (str, optional): Limit the export to one account.
    """
    names = {a.id: a.name for a in state.accounts}
    transactions = [
        t for t in state.transactions
        if account_id is None or t.account_id == account_id
    ]
    return [
        {
            'Date': t.date,
            'Account': names.get(t.account_id, ''),
            'Check #': t.check_num,
            'Payee': t.payee,
            'Description': t.description,
            'Payment': t.payment,
            'Deposit': t.deposit,
            'Category': t.category,
            'Cleared': 'TRUE' if t.cleared else 'FALSE',
        }
        for t in sorted(transactions, key=lambda t: t.date)
    ]


def export_text(state: Any, account_id: Optional[str] = None, fmt: str = 'csv',
                title: Optional[str] = None, date_range: Optional[str] = None) -> str:
    """Export transactions as comma- or tab-separated text.

    Args:
        fmt (str): ``csv`` or ``tsv``. The title and date range only apply to ``tsv``.
    """
    rows = export_rows(state, account_id=account_id)
    if fmt == 'csv':
        return codec.serialize_csv(rows, EXPORT_COLUMNS)
    if fmt == 'tsv':
        return codec.serialize_tsv(rows, EXPORT_COLUMNS, title=title, date_range=date_range)
    raise ValueError(f'Unknown export format: "{fmt}"')


def parse_text(text: str, fmt: str = 'csv') -> codec.ParsedTable:
    """Parse import text in the given format."""
    if fmt == 'csv':
        return codec.parse_csv(text)
    if fmt == 'tsv':
        return codec.parse_tsv(text)
    raise ValueError(f'Unknown import format: "{fmt}"')
