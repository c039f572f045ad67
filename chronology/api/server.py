"""
Edit Chronology: Forensic API Server
====================================

Read-only API over the aggregated edit history.

Endpoints:
- GET  /health
- GET  /api/v1/projects                                   -> Projects
- GET  /api/v1/projects/{project}/packages                -> Packages
- GET  /api/v1/projects/{project}/packages/{package}/files -> Files
- GET  /api/v1/files/{file_key}/operations                -> Operation sequence
- GET  /api/v1/files/{file_key}/text?index=               -> Reconstructed text
- GET  /api/v1/files/{file_key}/focal?time=               -> Nearest operation
- GET  /api/v1/files/{file_key}/lineage                   -> Rename/move chain
- POST /api/v1/refresh                                    -> Re-aggregate logs

File keys contain '%' separators; clients percent-encode them.

Usage:
    uvicorn chronology.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from ..contracts.base import NoBaseStateError, ReconstructionError, UnknownFileError
from ..temporal.replay import invalid_index_error
from ..engine import ChronologyConfig, ChronologyEngine
from ..observability import configure_logging
from .mapper import (
    FileDTO, FocalDTO, LineageDTO, OperationPageDTO, PackageDTO, ProjectDTO,
    RefreshDTO, TextDTO, map_file, map_focal, map_operation, map_package,
    map_project, map_refresh,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _engine(request: Request) -> ChronologyEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _file(engine: ChronologyEngine, file_key: str):
    try:
        return engine.get_file(file_key)
    except UnknownFileError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health")
async def health_check(request: Request):
    """System status."""
    engine = _engine(request)
    return {
        "status": "online",
        "mode": "forensic",
        "files": engine.index.file_count,
        "operations": engine.index.operation_count,
    }


@router.get("/api/v1/projects", response_model=List[ProjectDTO])
async def list_projects(request: Request):
    return [map_project(p) for p in _engine(request).list_projects()]


@router.get("/api/v1/projects/{project}/packages", response_model=List[PackageDTO])
async def list_packages(project: str, request: Request):
    engine = _engine(request)
    if engine.index.get_project(project) is None:
        raise HTTPException(status_code=404, detail=f"Unknown project {project!r}")
    return [map_package(p) for p in engine.list_packages(project)]


@router.get("/api/v1/projects/{project}/packages/{package}/files", response_model=List[FileDTO])
async def list_files(project: str, package: str, request: Request):
    engine = _engine(request)
    node = engine.index.get_project(project)
    if node is None or package not in node.packages:
        raise HTTPException(status_code=404, detail=f"Unknown package {project}/{package}")
    return [map_file(f) for f in engine.list_files(project, package)]


@router.get("/api/v1/files/{file_key}/operations", response_model=OperationPageDTO)
async def get_operations(
    file_key: str,
    request: Request,
    limit: int = Query(100, ge=1, le=10000),
    offset: int = Query(0, ge=0),
    lineage: Optional[bool] = None
):
    """Operation sequence, strictly ordered by (timestamp, sequence)."""
    engine = _engine(request)
    _file(engine, file_key)
    ops = engine.operations(file_key, use_lineage=lineage)
    page = [map_operation(i, ops[i]) for i in range(offset, min(offset + limit, len(ops)))]
    return OperationPageDTO(file_key=file_key, total=len(ops), offset=offset, operations=page)


@router.get("/api/v1/files/{file_key}/text", response_model=TextDTO)
async def get_text(
    file_key: str,
    request: Request,
    index: int = Query(..., ge=0),
    lineage: Optional[bool] = None
):
    """Text right after the operation at index."""
    engine = _engine(request)
    _file(engine, file_key)
    cursor = engine.cursor(file_key, use_lineage=lineage)
    if index >= cursor.size:
        raise HTTPException(status_code=400, detail=invalid_index_error(index, cursor.size).message)
    try:
        text = cursor.text_at(index)
    except NoBaseStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ReconstructionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return TextDTO(
        file_key=file_key,
        index=index,
        timestamp=cursor.operations[index].timestamp,
        text=text
    )


@router.get("/api/v1/files/{file_key}/focal", response_model=FocalDTO)
async def get_focal(
    file_key: str,
    request: Request,
    time: int = Query(...),
    lineage: Optional[bool] = None
):
    """Operation nearest to a time (ties go to the earlier one)."""
    engine = _engine(request)
    _file(engine, file_key)
    return map_focal(file_key, engine.focal(file_key, time, use_lineage=lineage))


@router.get("/api/v1/files/{file_key}/lineage", response_model=LineageDTO)
async def get_lineage(file_key: str, request: Request):
    engine = _engine(request)
    _file(engine, file_key)
    return LineageDTO(file_key=file_key, nodes=[map_file(n) for n in engine.lineage(file_key)])


@router.post("/api/v1/refresh", response_model=RefreshDTO)
async def refresh(request: Request):
    """Re-aggregate the history directory if any log changed."""
    return map_refresh(_engine(request).refresh())


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(config: Optional[ChronologyConfig] = None) -> FastAPI:
    """
    Build the API application.

    Without an explicit config, the engine is configured from CHRONOLOGY_*
    environment variables at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        effective = config or ChronologyConfig.from_env()
        configure_logging(effective.log_level)
        logger.info("Initializing forensic engine at %s", effective.store.history_dir)
        engine = ChronologyEngine(effective)
        report = engine.refresh()
        if report is not None and not report.success:
            logger.warning("Initial aggregation failed: %s", report.error.message)
        app.state.engine = engine
        yield
        logger.info("Shutting down forensic engine")
        app.state.engine = None

    app = FastAPI(
        title="Edit Chronology API",
        version="0.1.0",
        description="Forensic read layer over recorded edit histories",
        lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
