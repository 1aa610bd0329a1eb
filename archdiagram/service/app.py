"""FastAPI application entrypoint for archdiagram service mode."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import load_config
from ..engine import AnalysisEngine, AnalysisOptions, AnalysisResult
from ..errors import (
    AnalysisCancelled,
    AnalysisNotFound,
    ArchDiagramError,
    RepositoryUnavailable,
)
from ..models import Diagnostic
from ..render import Rendering
from ..stores.codec import diagram_to_dict, graph_to_dict
from ..vcs import GitClient

API_PREFIX = "/api/v1/architecture"

T = TypeVar("T")


class OptionsPayload(BaseModel):
    languages: List[str] = Field(default_factory=list)
    include_paths: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)
    include_tests: Optional[bool] = None
    diagram_types: List[str] = Field(default_factory=list)
    use_ai: Optional[bool] = None
    timeout: Optional[float] = None
    detect_patterns: bool = True
    include_dependencies: bool = True
    generate_metrics: bool = True
    max_depth: Optional[int] = Field(default=None, ge=0)


class AnalyzeRequest(BaseModel):
    project_id: str
    ref: str
    prior_ref: Optional[str] = None
    options: OptionsPayload = Field(default_factory=OptionsPayload)


class DiagnosticModel(BaseModel):
    code: str
    message: str
    severity: str
    path: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class PatternModel(BaseModel):
    pattern: str
    component_ids: List[str]
    confidence: float
    groups: Dict[str, List[str]] = Field(default_factory=dict)


class ImpactModel(BaseModel):
    scores: Dict[str, float]
    directly_touched: List[str]
    affected_fraction: float
    total_score: float


class DiagramResponse(BaseModel):
    diagram_type: str
    markup: str
    source: str
    diagnostics: List[DiagnosticModel] = Field(default_factory=list)


class AnalysisResponse(BaseModel):
    analysis_id: str
    project_id: str
    ref: str
    incremental: bool
    graph: Dict[str, Any]
    patterns: List[PatternModel]
    impact: Optional[ImpactModel] = None
    diagram: Optional[Dict[str, Any]] = None
    diagnostics: List[DiagnosticModel] = Field(default_factory=list)
    diagrams: List[DiagramResponse] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    analysis_id: str
    diagram_types: List[str] = Field(default_factory=list)
    use_ai: Optional[bool] = None


class DiagramsResponse(BaseModel):
    analysis_id: str
    diagrams: List[DiagramResponse]


class DeleteResponse(BaseModel):
    analysis_id: str
    deleted: bool


class HealthResponse(BaseModel):
    status: str


def engine_for(root: Path) -> AnalysisEngine:
    """Engine serving every git clone found directly under ``root``."""
    config = load_config(root)
    return AnalysisEngine(config, GitClient(base_dir=config.root))


def _default_engine() -> AnalysisEngine:
    return engine_for(Path.cwd())


def create_app(engine_factory: Callable[[], AnalysisEngine] = _default_engine) -> FastAPI:
    """Create the FastAPI application exposing archdiagram operations.

    The engine is created once per application; it owns the symbol cache and
    the in-flight run registry, so requests must share it.
    """

    app = FastAPI(title="archdiagram", version="0.1.0")
    engine = engine_factory()
    app.state.engine = engine

    async def _call(func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post(f"{API_PREFIX}/analyze", response_model=AnalysisResponse)
    async def analyze(payload: AnalyzeRequest) -> AnalysisResponse:
        options = AnalysisOptions(**payload.options.model_dump())
        result = await _call(
            lambda: engine.analyze(payload.project_id, payload.ref, payload.prior_ref, options=options)
        )
        return _analysis_response(result)

    @app.post(f"{API_PREFIX}/diagrams/generate", response_model=DiagramsResponse)
    async def generate(payload: GenerateRequest) -> DiagramsResponse:
        renderings = await _call(
            lambda: engine.generate_diagram(
                payload.analysis_id, payload.diagram_types or None, use_ai=payload.use_ai
            )
        )
        return DiagramsResponse(
            analysis_id=payload.analysis_id,
            diagrams=[_diagram_response(item) for item in renderings],
        )

    @app.get(f"{API_PREFIX}/analysis/{{analysis_id:path}}", response_model=AnalysisResponse)
    async def get_analysis(analysis_id: str) -> AnalysisResponse:
        result = await _call(lambda: engine.get_analysis(analysis_id))
        return _analysis_response(result)

    @app.get(f"{API_PREFIX}/diagrams/{{analysis_id:path}}", response_model=DiagramsResponse)
    async def get_diagrams(
        analysis_id: str,
        diagram_type: Optional[List[str]] = Query(default=None),
    ) -> DiagramsResponse:
        renderings = await _call(
            lambda: engine.generate_diagram(analysis_id, diagram_type or None, use_ai=False)
        )
        return DiagramsResponse(
            analysis_id=analysis_id,
            diagrams=[_diagram_response(item) for item in renderings],
        )

    @app.delete(f"{API_PREFIX}/analysis/{{analysis_id:path}}", response_model=DeleteResponse)
    async def delete_analysis(analysis_id: str) -> DeleteResponse:
        deleted = await _call(lambda: engine.delete_analysis(analysis_id))
        if not deleted:
            raise AnalysisNotFound(f"No analysis stored for '{analysis_id}'")
        return DeleteResponse(analysis_id=analysis_id, deleted=True)

    @app.exception_handler(AnalysisNotFound)
    async def not_found_handler(_: Request, exc: AnalysisNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RepositoryUnavailable)
    async def repository_handler(_: Request, exc: RepositoryUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(AnalysisCancelled)
    async def cancelled_handler(_: Request, exc: AnalysisCancelled) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ArchDiagramError)
    async def engine_error_handler(_: Request, exc: ArchDiagramError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"detail": str(exc), "code": exc.code})

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def _diagnostics(items: List[Diagnostic]) -> List[DiagnosticModel]:
    return [
        DiagnosticModel(
            code=item.code,
            message=item.message,
            severity=item.severity,
            path=item.path,
            detail=item.detail,
        )
        for item in items
    ]


def _diagram_response(rendering: Rendering) -> DiagramResponse:
    return DiagramResponse(
        diagram_type=rendering.diagram_type,
        markup=rendering.markup,
        source=rendering.source,
        diagnostics=_diagnostics(rendering.diagnostics),
    )


def _analysis_response(result: AnalysisResult) -> AnalysisResponse:
    impact = None
    if result.impact is not None:
        impact = ImpactModel(
            scores=result.impact.scores,
            directly_touched=result.impact.directly_touched,
            affected_fraction=result.impact.affected_fraction,
            total_score=result.impact.total_score,
        )
    return AnalysisResponse(
        analysis_id=result.analysis_id,
        project_id=result.project_id,
        ref=result.ref,
        incremental=result.incremental,
        graph=graph_to_dict(result.graph),
        patterns=[
            PatternModel(
                pattern=match.pattern,
                component_ids=list(match.component_ids),
                confidence=match.confidence,
                groups={name: list(members) for name, members in match.groups.items()},
            )
            for match in result.patterns
        ],
        impact=impact,
        diagram=diagram_to_dict(result.diagram) if result.diagram is not None else None,
        diagnostics=_diagnostics(result.diagnostics),
        diagrams=[_diagram_response(item) for item in result.renderings],
    )


def run_service(root: Path | None = None, *, host: str = "127.0.0.1", port: int = 8000) -> None:
    """Serve the API for the repositories under ``root`` (default: the working directory)."""
    base = (root or Path.cwd()).expanduser().resolve()
    uvicorn.run(create_app(lambda: engine_for(base)), host=host, port=port)


__all__ = ["API_PREFIX", "create_app", "engine_for", "run_service"]
