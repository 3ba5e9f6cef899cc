from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from mobile_cleaner.errors import EmptySelection
from mobile_cleaner.models.cells import Record, cell_text


@dataclass
class Table:
    """
    Rows of one sheet plus the caller's header / column selection.

    ``rows`` is fully materialised for workbooks; for CSV it only holds the
    preview rows and the data rows are streamed again at clean time.
    """
    rows: List[Record] = field(default_factory=list)
    header_row: Optional[int] = None
    selected_columns: List[int] = field(default_factory=list)
    name_column: Optional[int] = None

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def headers(self) -> List[str]:
        if self.header_row is None:
            return []
        return [cell_text(c).strip() for c in self.rows[self.header_row]]

    def set_header_row(self, index: int) -> None:
        if index < 0 or index >= len(self.rows):
            raise EmptySelection(f"Header row {index} is outside the sheet (0-{len(self.rows) - 1})")
        self.header_row = index
        self.selected_columns = []
        self.name_column = None

    def select_columns(self, columns) -> None:
        width = len(self.headers)
        for col in columns:
            if col < 0 or col >= width:
                raise EmptySelection(f"Column {col} is outside the header row (0-{width - 1})")
        self.selected_columns = sorted(set(columns))

    def toggle_column(self, index: int) -> None:
        if index in self.selected_columns:
            self.selected_columns = [c for c in self.selected_columns if c != index]
        else:
            self.select_columns(self.selected_columns + [index])

    def data_rows(self) -> List[Record]:
        """Every row strictly after the header row."""
        if self.header_row is None:
            return []
        return self.rows[self.header_row + 1:]

    def require_selection(self) -> None:
        if self.header_row is None or not self.selected_columns:
            raise EmptySelection("Select header row and at least one mobile column")
