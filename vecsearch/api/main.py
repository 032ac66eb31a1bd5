"""
HTTP surface over the vector search engine.

The record store and its index are opened once in the application lifespan
and closed on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .schemas import (
    CentroidsRequest,
    CentroidsResponse,
    DeleteRequest,
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    RecordResponse,
    RecordUpsertRequest,
    ReseedRequest,
    ReseedResponse,
    SearchRequest,
    SearchResponse,
    SearchResult,
    UpsertResponse,
)
from ..core import config
from ..core.errors import (
    DimensionMismatch,
    EmbeddingUnavailable,
    InvalidParameter,
    InvalidQuery,
    InvalidVector,
    ModelVersionMismatch,
    OperationCancelled,
    RecordNotFound,
    VectorSearchError,
)
from ..core.ingestion import IngestionPipeline
from ..core.query_engine import QueryEngine
from ..core.record_store import VectorRecordStore
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.types import SourceRecord

_STATUS_BY_ERROR = [
    (RecordNotFound, 404),
    (InvalidQuery, 400),
    (InvalidParameter, 400),
    (InvalidVector, 400),
    (DimensionMismatch, 400),
    (ModelVersionMismatch, 409),
    (OperationCancelled, 409),
    (EmbeddingUnavailable, 503),
]

_ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 404, 409, 500, 503)}


def create_app(store: Optional[VectorRecordStore] = None,
               embedder: Optional[IEmbeddingProvider] = None) -> FastAPI:
    """Build the application. Pass store/embedder to serve pre-built components (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for issue in config.validate_config():
            logger.warning(f"Config issue: {issue}")
        app_embedder = embedder or config.get_embedding_provider()
        app_store = store or config.open_store(embedder=app_embedder)
        app.state.store = app_store
        app.state.embedder = app_embedder
        app.state.engine = QueryEngine(app_store, app_embedder)
        app.state.pipeline = IngestionPipeline(app_store, app_embedder)
        try:
            yield
        finally:
            app_store.close()

    app = FastAPI(
        title="Vector Search API",
        version=config.VERSION,
        description="Embedding-indexed similarity search over a local record store",
        docs_url="/docs" if config.debug_enabled() else None,
        redoc_url="/redoc" if config.debug_enabled() else None,
        responses=_ERROR_RESPONSES,
        lifespan=lifespan,
    )

    @app.exception_handler(VectorSearchError)
    async def vector_search_error_handler(request: Request, exc: VectorSearchError):
        status = 500
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status = code
                break
        if status == 500:
            logger.error(f"Unhandled engine error on {request.url.path}: {exc}")
        body = ErrorResponse(error=type(exc).__name__, detail=str(exc))
        return JSONResponse(status_code=status, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    def health_endpoint(request: Request):
        """Check store and index health."""
        info = request.app.state.store.health()
        return HealthResponse(version=config.VERSION, **info)

    @app.post("/search", response_model=SearchResponse)
    def search_endpoint(req: SearchRequest, request: Request):
        results = request.app.state.engine.query(
            req.query,
            limit=req.limit,
            num_candidates=req.num_candidates,
            filter=req.filter,
            projection=req.projection,
        )
        return SearchResponse(
            query=req.query,
            results=[SearchResult(id=r.id, score=r.score, payload=r.payload) for r in results],
        )

    @app.get("/records/{record_id}", response_model=RecordResponse)
    def get_record_endpoint(record_id: str, request: Request, include_vector: bool = False):
        record = request.app.state.store.get(record_id)
        return RecordResponse(
            id=record.id,
            payload=record.payload,
            version=record.version,
            updated_at=record.updated_at,
            vector=record.vector.tolist() if include_vector else None,
        )

    @app.put("/records/{record_id}", response_model=UpsertResponse)
    def upsert_record_endpoint(record_id: str, req: RecordUpsertRequest, request: Request):
        version = request.app.state.store.upsert(record_id, req.vector, req.payload)
        return UpsertResponse(id=record_id, version=version)

    @app.post("/records/delete", response_model=DeleteResponse)
    def delete_records_endpoint(req: DeleteRequest, request: Request):
        return DeleteResponse(deleted=request.app.state.store.delete_by_id(req.ids))

    @app.post("/reseed", response_model=ReseedResponse)
    def reseed_endpoint(req: ReseedRequest, request: Request):
        summary = request.app.state.pipeline.reseed(
            SourceRecord(payload=item.payload, text=item.text, id=item.id) for item in req.records
        )
        return ReseedResponse(**summary.to_dict())

    @app.post("/maintenance/centroids", response_model=CentroidsResponse)
    def rebuild_centroids_endpoint(req: CentroidsRequest, request: Request):
        clusters = request.app.state.store.rebuild_centroids(req.num_clusters, seed=req.seed)
        return CentroidsResponse(clusters=clusters)

    return app


app = create_app()
