"""
Comma- and tab-separated text encoding of transaction tables.

The tab-separated variant reads register exports that carry title and date-range lines above
the column headers and totals below the data; the header row is located by a known column
name and rows without a date are dropped.

"""
import dataclasses
import io
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

LINE_TERMINATOR: str = '\r\n'

DATE_PATTERN: str = r'^(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2})$'

Row = Dict[str, str]


@dataclasses.dataclass(frozen=True)
class ParsedTable:
    rows: List[Row]
    columns: List[str]


def _frame(rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]]) -> pd.DataFrame:
    if columns is None:
        columns = list(rows[0].keys()) if rows else []
    df = pd.DataFrame(list(rows), columns=list(columns))
    return df.fillna('').astype(str)


def _strip(df: pd.DataFrame) -> pd.DataFrame:
    df.columns = [str(c).strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    # Drop rows without any content
    return df[(df != '').any(axis=1)].reset_index(drop=True)


def parse_csv(text: str) -> ParsedTable:
    """
    Parse comma-separated text whose first row holds the column names.

    Args:
        text (str): The file contents.

    Returns:
        ParsedTable: Rows keyed by column name, with every value a stripped string.
    """
    if not text.strip():
        return ParsedTable(rows=[], columns=[])

    df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skip_blank_lines=True)
    df = _strip(df)
    logging.debug(f'Parsed {df.shape[0]} rows x {df.shape[1]} columns of comma-separated text.')
    return ParsedTable(rows=df.to_dict(orient='records'), columns=list(df.columns))


def serialize_csv(rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None) -> str:
    """
    Serialize rows to comma-separated text with a header row.

    Args:
        rows: The rows, keyed by column name.
        columns: The column order. Defaults to the keys of the first row.
    """
    df = _frame(rows, columns)
    if df.columns.empty:
        return ''
    return df.to_csv(index=False, lineterminator=LINE_TERMINATOR)


def _find_header(lines: List[str], header_column: str) -> int:
    for i, line in enumerate(lines):
        parts = [p.strip() for p in line.split('\t')]
        if header_column in parts and len(parts) >= 3:
            return i
    # Fall back to the first non-empty line
    return next((i for i, line in enumerate(lines) if line.strip()), -1)


def parse_tsv(text: str, header_column: str = 'Date', date_column: Optional[str] = 'Date') -> ParsedTable:
    """
    Parse tab-separated text, skipping lines around the data.

    The header row is the first line with at least three fields that contains
    ``header_column``, or the first non-empty line if none does. When the header contains
    ``date_column``, only rows whose date looks like ``M/D/YYYY`` or ``YYYY-MM-DD`` are kept,
    which drops titles and totals.

    Args:
        text (str): The file contents.
        header_column (str): The column name that identifies the header row.
        date_column (str, optional): The column whose value must be a date.

    Returns:
        ParsedTable: Rows keyed by the non-empty column names.
    """
    lines = re.split(r'\r?\n', text)
    index = _find_header(lines, header_column)
    if index < 0:
        return ParsedTable(rows=[], columns=[])

    headers = [p.strip() for p in lines[index].split('\t')]
    records = []
    for line in lines[index + 1:]:
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split('\t')]
        parts += [''] * (len(headers) - len(parts))
        records.append(parts[:len(headers)])

    df = pd.DataFrame(records, columns=range(len(headers)), dtype=str)
    if date_column and date_column in headers:
        dates = df[headers.index(date_column)]
        df = df[dates.str.match(DATE_PATTERN)]

    keep = [i for i, h in enumerate(headers) if h]
    df = df[keep]
    df.columns = [headers[i] for i in keep]

    logging.debug(f'Parsed {df.shape[0]} rows of tab-separated text (header on line {index + 1}).')
    return ParsedTable(rows=df.to_dict(orient='records'), columns=list(df.columns))


def _total(df: pd.DataFrame, column: str) -> pd.Series:
    return pd.to_numeric(df[column], errors='coerce').fillna(0)


def serialize_tsv(rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None,
                  title: Optional[str] = None, date_range: Optional[str] = None) -> str:
    """
    Serialize rows to tab-separated text.

    Optional title and date-range lines precede the header. When the table has Payment or
    Deposit columns, a footer with Total Deposits, Total Payments and (when both exist) Net Total
    follows the data.

    Args:
        rows: The rows, keyed by column name.
        columns: The column order. Defaults to the keys of the first row.
        title (str, optional): A title line.
        date_range (str, optional): A date-range line.
    """
    df = _frame(rows, columns)
    if df.empty:
        return ''

    lines: List[str] = []
    if title:
        lines += [title, '']
    if date_range:
        lines += [date_range, '']

    lines.append('\t'.join(df.columns))
    lines.extend('\t'.join(values) for values in df.itertuples(index=False, name=None))

    has_payment = 'Payment' in df.columns
    has_deposit = 'Deposit' in df.columns
    if has_payment or has_deposit:
        lines.append('')
        if has_deposit:
            lines.append(f'Total Deposits\t{_total(df, "Deposit").sum():.2f}')
        if has_payment:
            lines.append(f'Total Payments\t{_total(df, "Payment").sum():.2f}')
        if has_deposit and has_payment:
            net = (_total(df, 'Deposit') - _total(df, 'Payment')).sum()
            lines.append(f'Net Total\t{net:.2f}')

    return LINE_TERMINATOR.join(lines)
