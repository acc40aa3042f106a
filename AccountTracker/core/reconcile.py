"""Statement reconciliation.

Matches a selection of an account's uncleared transactions against a bank statement's opening
and closing balances. The arithmetic uses :class:`decimal.Decimal`; a difference below half a
cent counts as balanced.

"""
import dataclasses
import datetime
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from . import model
from ..settings import locale
from ..status import status

TOLERANCE: Decimal = Decimal('0.005')


@dataclasses.dataclass(frozen=True)
class ReconciliationResult:
    account_id: str
    opening_balance: Decimal
    closing_balance: Decimal
    uncleared: Tuple[model.Transaction, ...]
    selected_ids: Tuple[str, ...]
    selected_total: Decimal
    expected_balance: Decimal
    difference: Decimal
    balanced: bool


def uncleared_transactions(transactions: Iterable[model.Transaction],
                           account_id: str) -> List[model.Transaction]:
    """Return the account's uncleared transactions ordered by date, ties in insertion order."""
    return sorted(
        (t for t in transactions if t.account_id == account_id and not t.cleared),
        key=lambda t: t.date,
    )


def parse_balance(value: Any, label: str) -> Decimal:
    """Parse a statement balance such as ``$1,234.50``.

    Raises:
        status.ValidationException: If the value is empty or not a number.
    """
    d = locale.parse_currency_input(value)
    if d is None or not d.is_finite():
        raise status.ValidationException(f'Invalid {label}: "{value}".')
    return d


def compute(transactions: Iterable[model.Transaction], account_id: str, opening: Any, closing: Any,
            selected_ids: Iterable[str] = ()) -> ReconciliationResult:
    """Compare the selected transactions against the statement balances.

    Args:
        transactions: All transactions.
        account_id (str): The account being reconciled.
        opening: The statement opening balance.
        closing: The statement closing balance.
        selected_ids: Ids of the transactions that appear on the statement.

    Returns:
        ReconciliationResult: The totals and whether they balance.

    Raises:
        status.ValidationException: If a balance is invalid or a selected id is not an
            uncleared transaction of the account.
    """
    opening_balance = parse_balance(opening, 'opening balance')
    closing_balance = parse_balance(closing, 'closing balance')

    uncleared = uncleared_transactions(transactions, account_id)
    wanted = set(selected_ids)
    unknown = wanted.difference(t.id for t in uncleared)
    if unknown:
        raise status.ValidationException(
            f'Not uncleared transactions of this account: {", ".join(sorted(unknown))}.'
        )

    selected = [t for t in uncleared if t.id in wanted]
    selected_total = sum((t.amount for t in selected), Decimal('0'))
    expected = opening_balance + selected_total
    difference = closing_balance - expected

    return ReconciliationResult(
        account_id=account_id,
        opening_balance=opening_balance,
        closing_balance=closing_balance,
        uncleared=tuple(uncleared),
        selected_ids=tuple(t.id for t in selected),
        selected_total=selected_total,
        expected_balance=expected,
        difference=difference,
        balanced=abs(difference) < TOLERANCE,
    )


def commit(result: ReconciliationResult, date: str = '',
           id_factory: Callable[[], str] = model.new_id
           ) -> Tuple[model.Reconciliation, List[Dict[str, Any]]]:
    """Build the reconciliation record and the updates clearing its transactions.

    Args:
        result: A balanced result from :func:`compute`.
        date (str): The statement date. Defaults to today.
        id_factory: Produces the new record's id.

    Returns:
        The new record and one partial update per selected transaction.

    Raises:
        status.ValidationException: If the result is not balanced or the date is invalid.
    """
    if not result.balanced:
        raise status.ValidationException(
            f'The statement does not balance (difference {result.difference:.2f}).'
        )
    date = model.validate_date(date or datetime.date.today().isoformat(), label='statement date')

    record = model.Reconciliation(
        id=id_factory(),
        account_id=result.account_id,
        date=date,
        statement_opening_balance=f'{result.opening_balance:.2f}',
        statement_closing_balance=f'{result.closing_balance:.2f}',
        transaction_ids=result.selected_ids,
    )
    updates = [
        {'id': transaction_id, 'cleared': True, 'reconciliation_id': record.id}
        for transaction_id in result.selected_ids
    ]
    logging.debug(f'Reconciled {len(updates)} transactions of account "{result.account_id}".')
    return record, updates


def summarize(result: ReconciliationResult, locale_name: Optional[str] = None) -> Dict[str, str]:
    """Return the result's figures formatted as currency, for display.

    The locale defaults to the one stored in the settings.
    """
    if locale_name is None:
        from ..settings import lib
        locale_name = lib.settings['locale'] or locale.DEFAULT_LOCALE
    return {
        'opening': locale.format_currency_value(result.opening_balance, locale_name),
        'selected': locale.format_currency_value(result.selected_total, locale_name),
        'expected': locale.format_currency_value(result.expected_balance, locale_name),
        'closing': locale.format_currency_value(result.closing_balance, locale_name),
        'difference': locale.format_currency_value(result.difference, locale_name),
    }
