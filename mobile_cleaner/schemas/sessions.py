from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel


class SessionCreatedResponse(BaseModel):
    session_id: str
    filename: str
    file_format: str
    file_size: int
    sheet_names: List[str]
    warnings: List[str] = []


class PreviewRequest(BaseModel):
    sheet: Optional[str] = None


class SelectionResponse(BaseModel):
    header_row: Optional[int] = None
    headers: List[str] = []
    selected_columns: List[int] = []
    name_column: Optional[int] = None


class PreviewResponse(SelectionResponse):
    sheet: Optional[str] = None
    rows: List[List[Any]]
    warnings: List[str] = []


class HeaderRowRequest(BaseModel):
    index: int


class NameColumnRequest(BaseModel):
    index: Optional[int] = None


class RunStatsResponse(BaseModel):
    total: int
    valid: int
    duplicates: int
    invalid_pattern: int
    invalid_length: int
    samples: dict[str, int]
    fast_mode: bool


class SessionStatusResponse(SelectionResponse):
    filename: Optional[str] = None
    file_format: Optional[str] = None
    sheet_names: List[str] = []
    sheet_name: Optional[str] = None
    is_processing: bool
    progress: int
    warnings: List[str] = []
    stats: Optional[RunStatsResponse] = None
