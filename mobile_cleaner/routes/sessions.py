from __future__ import annotations

import io
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse

from mobile_cleaner.errors import (
    CleanerError,
    EmptySelection,
    EmptySheet,
    EncryptedOrProtected,
    InputTooLarge,
    UnsupportedFileType,
    UnsupportedOrCorruptContainer,
)
from mobile_cleaner.models.cells import cell_value
from mobile_cleaner.models.outcome import ExportMode, StatCategory
from mobile_cleaner.schemas.sessions import (
    HeaderRowRequest,
    NameColumnRequest,
    PreviewRequest,
    PreviewResponse,
    SelectionResponse,
    SessionCreatedResponse,
    SessionStatusResponse,
)
from mobile_cleaner.services.export import ExportArtifact
from mobile_cleaner.services.session import CleaningSession, SessionStore

router = APIRouter(prefix="/sessions", tags=["sessions"])

ERROR_STATUS = {
    InputTooLarge: 413,
    EncryptedOrProtected: 422,
    UnsupportedOrCorruptContainer: 422,
    UnsupportedFileType: 400,
    EmptySheet: 400,
    EmptySelection: 400,
}


def get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _get_session_or_404(session_id: str, store: SessionStore) -> CleaningSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _http_error(exc: CleanerError) -> HTTPException:
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400)
    return HTTPException(status_code=status, detail=str(exc))


def _selection(session: CleaningSession) -> dict:
    table = session.table
    return {
        "header_row": table.header_row,
        "headers": table.headers,
        "selected_columns": list(table.selected_columns),
        "name_column": table.name_column,
    }


def _download(artifact: ExportArtifact, headers: Optional[dict] = None) -> StreamingResponse:
    response_headers = {
        "Content-Disposition": f'attachment; filename="{artifact.filename}"',
        "X-Row-Count": str(artifact.row_count),
    }
    response_headers.update(headers or {})
    return StreamingResponse(io.BytesIO(artifact.content), media_type=artifact.media_type, headers=response_headers)


# ─────────────────────────────────────────────────────────────────────────────
# Upload / preview
# ─────────────────────────────────────────────────────────────────────────────

@router.post("", response_model=SessionCreatedResponse, status_code=201)
async def create_session(
    file: UploadFile = File(...),
    store: SessionStore = Depends(get_store),
):
    """Upload a CSV or Excel file and open a cleaning session for it."""
    data = await file.read()
    session_id, session = store.create()
    try:
        sheet_names = session.load(data, file.filename or "")
    except CleanerError as e:
        store.delete(session_id)
        raise _http_error(e)

    return SessionCreatedResponse(
        session_id=session_id,
        filename=session.filename,
        file_format=session.file_format.value,
        file_size=len(data),
        sheet_names=sheet_names,
        warnings=session.warnings,
    )


@router.post("/{session_id}/preview", response_model=PreviewResponse)
async def preview(
    session_id: str,
    body: Optional[PreviewRequest] = None,
    store: SessionStore = Depends(get_store),
):
    """Load a sheet (or the CSV) and return its first rows with a guessed selection."""
    session = _get_session_or_404(session_id, store)
    try:
        rows = await session.preview(sheet=body.sheet if body else None)
    except CleanerError as e:
        raise _http_error(e)

    return PreviewResponse(
        sheet=session.sheet_name,
        rows=[[cell_value(c) for c in row] for row in rows],
        warnings=session.warnings,
        **_selection(session),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Selection
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{session_id}/header-row", response_model=SelectionResponse)
def set_header_row(
    session_id: str,
    body: HeaderRowRequest,
    store: SessionStore = Depends(get_store),
):
    session = _get_session_or_404(session_id, store)
    try:
        session.set_header_row(body.index)
    except CleanerError as e:
        raise _http_error(e)
    return SelectionResponse(**_selection(session))


@router.post("/{session_id}/columns/{index}/toggle", response_model=SelectionResponse)
def toggle_column(
    session_id: str,
    index: int,
    store: SessionStore = Depends(get_store),
):
    session = _get_session_or_404(session_id, store)
    try:
        session.toggle_column(index)
    except CleanerError as e:
        raise _http_error(e)
    return SelectionResponse(**_selection(session))


@router.put("/{session_id}/name-column", response_model=SelectionResponse)
def set_name_column(
    session_id: str,
    body: NameColumnRequest,
    store: SessionStore = Depends(get_store),
):
    session = _get_session_or_404(session_id, store)
    try:
        session.set_name_column(body.index)
    except CleanerError as e:
        raise _http_error(e)
    return SelectionResponse(**_selection(session))


# ─────────────────────────────────────────────────────────────────────────────
# Clean / export
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{session_id}/clean")
async def clean_and_export(
    session_id: str,
    mode: ExportMode = Query(ExportMode.FULL),
    store: SessionStore = Depends(get_store),
):
    """Run the cleaner and download the export; counters are returned as response headers."""
    session = _get_session_or_404(session_id, store)
    result = await session.clean_and_export(mode)
    if result is None:
        raise HTTPException(status_code=409, detail="Already processing")
    if not result.ok:
        if result.error is not None:
            raise _http_error(result.error)
        raise HTTPException(status_code=500, detail=result.message)

    stats = result.stats
    return _download(result.artifact, {
        "X-Total-Rows": str(stats["total"]),
        "X-Valid": str(stats["valid"]),
        "X-Duplicates": str(stats["duplicates"]),
        "X-Invalid-Pattern": str(stats["invalid_pattern"]),
        "X-Invalid-Length": str(stats["invalid_length"]),
        "X-Fast-Mode": str(stats["fast_mode"]).lower(),
    })


@router.post("/{session_id}/cancel")
def cancel(session_id: str, store: SessionStore = Depends(get_store)):
    session = _get_session_or_404(session_id, store)
    return {"cancelled": session.cancel()}


@router.get("/{session_id}/status", response_model=SessionStatusResponse)
def status(session_id: str, store: SessionStore = Depends(get_store)):
    session = _get_session_or_404(session_id, store)
    return SessionStatusResponse(**session.status())


@router.get("/{session_id}/reports/{category}")
def audit_report(
    session_id: str,
    category: StatCategory,
    store: SessionStore = Depends(get_store),
):
    """Download the audit samples recorded for one outcome category in the last run."""
    session = _get_session_or_404(session_id, store)
    try:
        artifact = session.audit_report(category)
    except CleanerError as e:
        raise _http_error(e)
    return _download(artifact)


@router.delete("/{session_id}", status_code=204)
def delete_session(session_id: str, store: SessionStore = Depends(get_store)):
    if not store.delete(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
