"""
Request and response models for the search API.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class SearchRequest(BaseModel):
    query: str
    limit: int = Field(default=3, ge=1)
    num_candidates: Optional[int] = Field(default=None, ge=1)
    filter: Optional[Dict[str, Any]] = None
    projection: Optional[List[str]] = None

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v


class SearchResult(BaseModel):
    id: str
    score: float
    payload: Dict[str, Any]


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]


class RecordUpsertRequest(BaseModel):
    vector: List[float]
    payload: Dict[str, Any] = Field(default_factory=dict)


class RecordResponse(BaseModel):
    id: str
    payload: Dict[str, Any]
    version: int
    updated_at: datetime
    vector: Optional[List[float]] = None


class UpsertResponse(BaseModel):
    id: str
    version: int


class DeleteRequest(BaseModel):
    ids: List[str]


class DeleteResponse(BaseModel):
    deleted: int


class ReseedItem(BaseModel):
    text: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ReseedRequest(BaseModel):
    records: List[ReseedItem]


class IngestFailureModel(BaseModel):
    record_id: str
    reason: str
    attempts: int
    last_error: Optional[str] = None


class ReseedResponse(BaseModel):
    succeeded: int
    failed: int
    skipped: int
    cancelled: bool
    succeeded_ids: List[str]
    failures: List[IngestFailureModel]


class CentroidsRequest(BaseModel):
    num_clusters: int = Field(ge=0)
    seed: int = 0


class CentroidsResponse(BaseModel):
    clusters: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    dimension: int
    model_version: Optional[str] = None
    stale: bool
    index_provider: str
    index_size: int
    record_count: Optional[int] = None
    partitions: Optional[List[int]] = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
