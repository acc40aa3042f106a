"""Normalized data model for AccountTracker.

Entities are frozen dataclasses. Every persisted field carries its column header in the field
metadata, so the tabular mapper converts records to rows and back without a hand-maintained
table:

    - :class:`Account`, :class:`Transaction`, :class:`Payee`, :class:`Category`,
      :class:`Reconciliation` and :class:`Metadata`.
    - Validation helpers that raise :class:`status.ValidationException` before anything reaches
      the state store.

"""
import dataclasses
import datetime
import enum
import re
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..settings import locale
from ..status import status

SCHEMA_VERSION: str = '1'

_AMOUNT_RE = re.compile(r'^(\d+(\.\d{0,2})?|\.\d{1,2})$')


class AccountType(enum.StrEnum):
    Checking = 'checking'
    Savings = 'savings'


def column(header: str, default: Any = '', kind: str = 'str') -> Any:
    """Declare a persisted field.

    Args:
        header (str): The column header the field is stored under.
        default: The default value.
        kind (str): How the value is encoded in a cell: 'str', 'bool' or 'list'.
    """
    return dataclasses.field(default=default, metadata={'header': header, 'kind': kind})


def new_id() -> str:
    """Return a new opaque identifier."""
    return uuid.uuid4().hex


def now_str() -> str:
    """Return the current UTC time as an ISO date-time string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec='milliseconds')


def _encode(kind: str, value: Any) -> str:
    if kind == 'bool':
        return 'TRUE' if value else 'FALSE'
    if kind == 'list':
        return ','.join(value)
    return '' if value is None else str(value)


def _decode(kind: str, value: Any) -> Any:
    value = '' if value is None else str(value)
    if kind == 'bool':
        return value.strip().upper() == 'TRUE'
    if kind == 'list':
        return tuple(v.strip() for v in value.split(',') if v.strip())
    return value


class Record:
    """Mixin mapping a dataclass to and from a header-keyed row."""

    @classmethod
    def headers(cls) -> List[str]:
        return [f.metadata['header'] for f in dataclasses.fields(cls)]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        """Build a record from a mapping of column header to cell value.

        Missing columns fall back to the field defaults.
        """
        kwargs = {}
        for f in dataclasses.fields(cls):
            header = f.metadata['header']
            if header in row:
                kwargs[f.name] = _decode(f.metadata['kind'], row[header])
        return cls(**kwargs)

    def to_row(self) -> List[str]:
        """Return the record's cells in header order."""
        return [
            _encode(f.metadata['kind'], getattr(self, f.name))
            for f in dataclasses.fields(self)
        ]

    def replace(self, **changes: Any):
        return dataclasses.replace(self, **changes)


@dataclasses.dataclass(frozen=True)
class Account(Record):
    id: str = column('id')
    name: str = column('name')
    nickname: str = column('nickname')
    address: str = column('address')
    phone: str = column('phone')
    web_address: str = column('webAddress')
    type: str = column('type', default=AccountType.Checking.value)
    created_at: str = column('createdAt')

    @property
    def display_name(self) -> str:
        return self.nickname or self.name


@dataclasses.dataclass(frozen=True)
class Transaction(Record):
    id: str = column('id')
    account_id: str = column('accountId')
    date: str = column('date')
    check_num: str = column('checkNum')
    payee: str = column('payee')
    description: str = column('description')
    payment: str = column('payment')
    deposit: str = column('deposit')
    category: str = column('category')
    cleared: bool = column('cleared', default=False, kind='bool')
    reconciliation_id: str = column('reconciliationId')

    @property
    def amount(self) -> Decimal:
        """The signed amount, deposit minus payment."""
        deposit = locale.parse_currency_input(self.deposit) or Decimal(0)
        payment = locale.parse_currency_input(self.payment) or Decimal(0)
        return deposit - payment


@dataclasses.dataclass(frozen=True)
class Payee(Record):
    id: str = column('id')
    name: str = column('name')


@dataclasses.dataclass(frozen=True)
class Category(Record):
    id: str = column('id')
    name: str = column('name')


@dataclasses.dataclass(frozen=True)
class Reconciliation(Record):
    id: str = column('id')
    account_id: str = column('accountId')
    date: str = column('date')
    statement_opening_balance: str = column('statementOpeningBalance')
    statement_closing_balance: str = column('statementClosingBalance')
    transaction_ids: Tuple[str, ...] = column('transactionIds', default=(), kind='list')


@dataclasses.dataclass(frozen=True)
class Metadata(Record):
    title: str = column('title')
    owner: str = column('owner')
    last_saved: str = column('lastSaved')
    version: str = column('version', default=SCHEMA_VERSION)


def field_name(cls, key: str) -> str:
    """Resolve a column header or attribute name to the dataclass attribute name.

    Raises:
        status.ValidationException: If the key names no field of ``cls``.
    """
    for f in dataclasses.fields(cls):
        if key in (f.name, f.metadata['header']):
            return f.name
    raise status.ValidationException(f'{cls.__name__} has no field "{key}".')


def coerce_bool(value: Any, label: str = 'flag') -> bool:
    """Return ``value`` as a bool, accepting the ``TRUE``/``FALSE`` cell text in any case.

    Raises:
        status.ValidationException: If ``value`` is a string other than true or false.
    """
    if isinstance(value, str):
        text = value.strip().upper()
        if text not in ('TRUE', 'FALSE'):
            raise status.ValidationException(f'Invalid {label}: "{value}". Must be TRUE or FALSE.')
        return text == 'TRUE'
    return bool(value)


def normalize_changes(cls, changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a partial update keyed by headers or attributes to attribute names.

    Values of bool and list fields are converted from their cell text.

    Raises:
        status.ValidationException: If a key names no field or a flag is not true or false.
    """
    kinds = {f.name: f.metadata['kind'] for f in dataclasses.fields(cls)}
    normalized = {}
    for key, value in changes.items():
        name = field_name(cls, key)
        if kinds[name] == 'bool':
            value = coerce_bool(value, label=name)
        elif kinds[name] == 'list' and isinstance(value, str):
            value = _decode('list', value)
        elif kinds[name] == 'list':
            value = tuple(value)
        normalized[name] = value
    return normalized


def normalize_amount(value: Any, label: str = 'amount') -> str:
    """Normalize a money amount to a string with exactly two decimal places.

    Empty input stays empty.

    Raises:
        status.ValidationException: If the value is not a non-negative decimal with at most two
            fractional digits.
    """
    if value is None:
        return ''
    text = str(value).strip()
    if not text:
        return ''
    if not _AMOUNT_RE.match(text):
        raise status.ValidationException(f'Invalid {label}: "{value}".')
    return f'{Decimal(text):.2f}'


def validate_date(value: Any, label: str = 'date') -> str:
    """Return ``value`` as an ISO ``YYYY-MM-DD`` date string.

    ``M/D/YYYY`` input is accepted and converted.

    Raises:
        status.ValidationException: If the date is missing or malformed.
    """
    text = locale.to_iso_date(str(value or '').strip())
    if not text:
        raise status.ValidationException(f'Missing {label}.')
    try:
        return datetime.date.fromisoformat(text).isoformat()
    except ValueError as ex:
        raise status.ValidationException(f'Invalid {label}: "{value}".') from ex


def validate_name(name: Any, label: str = 'name') -> str:
    """Return the stripped name.

    Raises:
        status.ValidationException: If the name is empty.
    """
    text = str(name or '').strip()
    if not text:
        raise status.ValidationException(f'The {label} must not be empty.')
    return text


def find_by_name(items: Iterable[Any], name: str) -> Optional[Any]:
    """Return the first payee or category whose name matches ``name`` ignoring case."""
    key = name.strip().casefold()
    return next((item for item in items if item.name.casefold() == key), None)


def validate_unique_name(items: Sequence[Any], name: Any, label: str, exclude_id: str = '') -> str:
    """Validate a payee or category name for an explicit add or rename.

    Raises:
        status.ValidationException: If the name is empty or already taken, ignoring case.
    """
    text = validate_name(name, label=f'{label} name')
    existing = find_by_name((i for i in items if i.id != exclude_id), text)
    if existing:
        raise status.ValidationException(f'A {label} named "{existing.name}" already exists.')
    return text


def validate_account(account: Account) -> Account:
    """Return a normalized copy of ``account``.

    Raises:
        status.ValidationException: If the name is empty or the type is unknown.
    """
    name = validate_name(account.name, label='account name')
    type_ = (account.type or AccountType.Checking.value).strip().lower()
    if type_ not in tuple(AccountType):
        raise status.ValidationException(
            f'Invalid account type: "{account.type}". Must be one of {", ".join(AccountType)}.'
        )
    return account.replace(
        name=name,
        nickname=account.nickname.strip(),
        type=type_,
        created_at=account.created_at or now_str(),
    )


def validate_transaction(transaction: Transaction, accounts: Iterable[Account]) -> Transaction:
    """Return a normalized copy of ``transaction``.

    Checks the account reference, normalizes the date and both amounts, and rejects a
    transaction carrying both a non-zero payment and a non-zero deposit.

    Raises:
        status.ValidationException: If any field is invalid.
    """
    if not any(a.id == transaction.account_id for a in accounts):
        raise status.ValidationException(f'Unknown account: "{transaction.account_id}".')

    date = validate_date(transaction.date)
    payment = normalize_amount(transaction.payment, label='payment')
    deposit = normalize_amount(transaction.deposit, label='deposit')
    if payment and deposit and Decimal(payment) and Decimal(deposit):
        raise status.ValidationException('A transaction cannot have both a payment and a deposit.')

    return transaction.replace(
        date=date,
        payment=payment,
        deposit=deposit,
        check_num=transaction.check_num.strip(),
        payee=transaction.payee.strip(),
        description=transaction.description.strip(),
        category=transaction.category.strip(),
    )


def find_account(accounts: Iterable[Account], name: str) -> Optional[Account]:
    """Return the account whose name or nickname matches ``name`` ignoring case."""
    key = name.strip().casefold()
    if not key:
        return None
    return next(
        (a for a in accounts if a.name.casefold() == key or (a.nickname and a.nickname.casefold() == key)),
        None,
    )
