"""
Set and row differencing for pgpatch.
"""

from typing import Any, Callable, Dict, Hashable, Iterable, List, Sequence, Tuple, TypeVar


T = TypeVar("T")


def keyed_difference(a: Iterable[T], b: Iterable[T], key: Callable[[T], Hashable]) -> List[T]:
    """Elements of ``a`` whose key does not occur in ``b``, in ``a`` order."""
    seen = {key(item) for item in b}
    return [item for item in a if key(item) not in seen]


def row_key(row: Dict[str, Any], compare_columns: Sequence[str]) -> Tuple[Any, ...]:
    """Composite identity of a row: its compare-column values, NULL kept as None."""
    return tuple(row.get(column) for column in compare_columns)


def row_difference(
    a: Iterable[Dict[str, Any]],
    b: Iterable[Dict[str, Any]],
    compare_columns: Sequence[str],
) -> List[Dict[str, Any]]:
    """
    Rows of ``a`` with no row in ``b`` sharing the same compare-column values.

    Only identity is compared. A row whose other columns differ is not
    reported.
    """
    return keyed_difference(a, b, lambda row: row_key(row, compare_columns))
