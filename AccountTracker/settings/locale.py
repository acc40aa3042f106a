"""
Module for formatting and parsing amounts and dates using Babel.

"""
import datetime
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from babel import Locale, numbers
from babel.core import UnknownLocaleError
from babel.dates import format_date as babel_format_date

CURRENCY_MAP: dict[str, str] = {
    'US': 'USD',
    'GB': 'GBP',
    'DE': 'EUR',
    'FR': 'EUR',
    'IT': 'EUR',
    'ES': 'EUR',
    'NL': 'EUR',
    'JP': 'JPY',
    'CA': 'CAD',
    'AU': 'AUD',
    'IN': 'INR',
    'MX': 'MXN',
    'ZA': 'ZAR',
}

LOCALE_MAP: List[str] = [
    'en_US',
    'en_GB',
    'en_CA',
    'en_AU',
    'en_IN',
    'en_ZA',
    'de_DE',
    'es_ES',
    'es_MX',
    'fr_FR',
    'it_IT',
    'ja_JP',
    'nl_NL',
]

DEFAULT_LOCALE: str = 'en_US'

_US_DATE_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')

Number = Union[int, float, Decimal, str]


def get_currency_from_locale(locale: str) -> str:
    """
    Retrieve the default currency code based on the locale's territory.

    Args:
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: Currency code such as 'USD'. Defaults to 'USD' if the territory is unknown.
    """
    parts = locale.split('_')
    if len(parts) < 2:
        return 'USD'
    return CURRENCY_MAP.get(parts[1], 'USD')


def _to_decimal(value: Number) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def format_float(value: Number, locale: str = DEFAULT_LOCALE) -> str:
    """
    Format a number as a decimal string according to the locale conventions.

    Args:
        value: The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted decimal string, or an empty string for empty or non-numeric input.
    """
    d = _to_decimal(value)
    if d is None:
        return ''
    try:
        return numbers.format_decimal(d, format='#,##0.00', locale=Locale.parse(locale))
    except (ValueError, UnknownLocaleError) as ex:
        logging.warning(f'Error formatting decimal: {ex}')
        return f'{d:.2f}'


def format_currency_value(value: Number, locale: str = DEFAULT_LOCALE) -> str:
    """
    Format a number as a currency string based on the locale's default currency.

    Empty and non-numeric input formats as an empty string.

    Args:
        value: The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted currency string, e.g. '$1,234.50'.
    """
    d = _to_decimal(value)
    if d is None:
        return ''
    try:
        currency_code = get_currency_from_locale(locale)
        return numbers.format_currency(d, currency=currency_code, locale=Locale.parse(locale))
    except (ValueError, UnknownLocaleError) as ex:
        logging.warning(f'Error formatting currency: {ex}')
        return f'{d:.2f}'


def format_date(value: str, locale: Optional[str] = None) -> str:
    """
    Format an ISO date string for display.

    Without a locale, ``YYYY-MM-DD`` becomes ``MM/DD/YYYY`` by rearranging the parts, so the
    calendar day never shifts. With a locale, Babel's short date format is used.
    Strings that are not ISO dates are returned unchanged.

    Args:
        value (str): Date string, usually ``YYYY-MM-DD``.
        locale (str, optional): Locale string, e.g. 'en_GB'.

    Returns:
        str: The display string.
    """
    if not value:
        return ''
    m = _ISO_DATE_RE.match(value)
    if not m:
        return value
    if locale is None:
        return f'{m.group(2)}/{m.group(3)}/{m.group(1)}'
    d = datetime.date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    return babel_format_date(d, format='short', locale=Locale.parse(locale))


def to_iso_date(value: str) -> str:
    """
    Normalize a date string to ``YYYY-MM-DD``.

    Accepts ISO dates, ISO date-times (the date part is kept) and ``M/D/YYYY``.
    Anything else is returned unchanged so that validation can report it.
    """
    if not value:
        return ''
    value = value.strip()
    if _ISO_DATE_RE.match(value):
        return value
    m = _US_DATE_RE.match(value)
    if m:
        try:
            return datetime.date(int(m.group(3)), int(m.group(1)), int(m.group(2))).isoformat()
        except ValueError:
            return value
    try:
        return datetime.datetime.fromisoformat(value).date().isoformat()
    except ValueError:
        return value


def looks_like_date(value: str) -> bool:
    """Return True for ``M/D/YYYY``, ``MM/DD/YYYY`` or ``YYYY-MM-DD`` strings."""
    return bool(_US_DATE_RE.match(value) or _ISO_DATE_RE.match(value))


def parse_currency_input(value: Number) -> Optional[Decimal]:
    """
    Parse user-typed currency such as ``$1,234.50`` into a Decimal.

    Every character other than digits, '.' and '-' is dropped before parsing.

    Returns:
        Decimal or None: None for empty or unparseable input.
    """
    if value is None or value == '':
        return None
    if isinstance(value, Decimal):
        return value
    cleaned = re.sub(r'[^0-9.\-]', '', str(value))
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None
