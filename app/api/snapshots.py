"""Snapshot endpoints."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ReportingError, StorageError, ValidationError
from app.core.periods import parse_month
from app.core.snapshots import SnapshotService
from app.database import get_db

router = APIRouter()


class GenerateRequest(BaseModel):
    month: str  # YYYY-MM
    regenerate: bool = False


def get_snapshot_service(db: Session = Depends(get_db)) -> SnapshotService:
    return SnapshotService(db)


def to_http_error(error: ReportingError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, StorageError):
        return HTTPException(status_code=500, detail="Snapshot storage failed")
    return HTTPException(status_code=500, detail=str(error))


@router.post("/clients/{client_id}/snapshots", status_code=201)
def generate_snapshot(
    client_id: int,
    request: GenerateRequest,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """Generate the snapshot for one month."""
    try:
        year, month = parse_month(request.month)
        result = asyncio.run(service.generate(client_id, year, month, regenerate=request.regenerate))
    except ReportingError as e:
        raise to_http_error(e)
    return result.model_dump(mode="json", by_alias=True)


@router.get("/clients/{client_id}/snapshots")
def list_snapshots(
    client_id: int,
    limit: int = Query(12, ge=1),
    offset: int = Query(0, ge=0),
    service: SnapshotService = Depends(get_snapshot_service),
):
    """List a client's snapshots, newest month first."""
    try:
        page = service.list_summaries(client_id, limit=limit, offset=offset)
    except ReportingError as e:
        raise to_http_error(e)
    return {"items": [item.to_dict() for item in page["items"]], "total": page["total"]}


@router.get("/snapshots/{snapshot_id}")
def get_snapshot(snapshot_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    """Get snapshot metadata."""
    try:
        return service.get_summary(snapshot_id).to_dict()
    except ReportingError as e:
        raise to_http_error(e)


@router.get("/snapshots/{snapshot_id}/data")
def get_snapshot_data(snapshot_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    """Get the full artifact, byte for byte as stored."""
    try:
        content = service.get_artifact_bytes(snapshot_id)
    except ReportingError as e:
        raise to_http_error(e)
    return Response(content=content, media_type="application/json")


@router.delete("/snapshots/{snapshot_id}", status_code=204)
def delete_snapshot(snapshot_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    """Delete a snapshot and its stored content."""
    try:
        service.delete_snapshot(snapshot_id)
    except ReportingError as e:
        raise to_http_error(e)
    return Response(status_code=204)


@router.post("/snapshots/{snapshot_id}/render")
def render_snapshot(snapshot_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    """Render the snapshot to PDF."""
    try:
        return service.render_pdf(snapshot_id).to_dict()
    except ReportingError as e:
        raise to_http_error(e)


@router.get("/snapshots/{snapshot_id}/pdf")
def get_snapshot_pdf(snapshot_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    """Download the rendered PDF."""
    try:
        content = service.get_pdf(snapshot_id)
    except ReportingError as e:
        raise to_http_error(e)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="snapshot-{snapshot_id}.pdf"'},
    )
