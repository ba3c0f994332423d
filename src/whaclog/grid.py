"""Cell index arithmetic for a rows x cols board.

Rows and columns are 1-based, cell indices are 0-based and row-major:

    index = (row - 1) * cols + (col - 1)

Out-of-range input never raises; it yields ``None``.
"""

from __future__ import annotations


def cell_count(rows: int, cols: int) -> int:
    """Return number of cells on the board (0 for a degenerate board)."""
    if rows < 1 or cols < 1:
        return 0
    return rows * cols


def to_index(row: int, col: int, cols: int, rows: int | None = None) -> int | None:
    """Convert (row, col) to a cell index.

    Args:
        row: 1-based row
        col: 1-based column
        cols: Number of columns
        rows: Number of rows (upper bound on `row` is only checked when given)

    Returns:
        0-based index, or None if the cell lies outside the board
    """
    if cols < 1 or not (1 <= col <= cols) or row < 1:
        return None
    if rows is not None and row > rows:
        return None
    return (row - 1) * cols + (col - 1)


def to_row_col(index: int, cols: int, rows: int | None = None) -> tuple[int, int] | None:
    """Convert a cell index to (row, col). Inverse of `to_index`."""
    if cols < 1 or index < 0:
        return None
    if rows is not None and index >= cell_count(rows, cols):
        return None
    return index // cols + 1, index % cols + 1


def label(row: int, col: int) -> str:
    return f"r{row}c{col}"
