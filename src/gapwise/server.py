import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from gapwise.application.catalog import CatalogService
from gapwise.application.config import resolve_config
from gapwise.application.factory import get_repository
from gapwise.application.service import LearningService
from gapwise.consts import VERSION
from gapwise.domain.errors import GapwiseError, NotFoundError, ValidationError
from gapwise.domain.models import Concept, ItemType, PlanBudget, content_from_dict

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gapwise.server")


@dataclass
class Services:
    learning: LearningService
    catalog: CatalogService


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Services bound to the configured repository, created on first use."""
    config = resolve_config()
    repo = get_repository(config)
    logger.info(f"Using {config.backend} backend")
    return Services(LearningService(repo, config=config), CatalogService(repo))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"gapwise server v{VERSION} starting up...")
    yield
    logger.info("gapwise server shutting down...")


app = FastAPI(
    title="gapwise Server",
    description="Attempt ingestion, mastery and daily plans over HTTP.",
    version=VERSION,
    lifespan=lifespan,
)


def http_error(e: GapwiseError) -> HTTPException:
    """Map a domain error onto a status code; unknown items count as not found."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------- Catalog ----------


class ConceptRequest(BaseModel):
    name: str
    domain: str = "General"
    subdomain: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    id: str | None = None


class ItemRequest(BaseModel):
    stem: str
    type: str
    concept_ids: list[str]
    # Variant fields for `type`, e.g. {"choices": [...], "correct_answer": "..."}
    content: dict[str, Any]
    difficulty: int = 50
    explanation: str = ""
    source: str | None = None
    id: str | None = None


class ItemUpdateRequest(BaseModel):
    stem: str | None = None
    concept_ids: list[str] | None = None
    difficulty: int | None = None
    explanation: str | None = None
    source: str | None = None


class CatalogYamlRequest(BaseModel):
    yaml: str


@app.get("/concepts")
async def list_concepts(services: Services = Depends(get_services)):
    return await services.catalog.list_concepts()


@app.post("/concepts", status_code=201)
async def create_concept(req: ConceptRequest, services: Services = Depends(get_services)):
    try:
        return await services.catalog.create_concept(
            name=req.name,
            domain=req.domain,
            subdomain=req.subdomain,
            description=req.description,
            tags=req.tags,
            concept_id=req.id,
        )
    except GapwiseError as e:
        raise http_error(e) from e


@app.get("/concepts/{concept_id}")
async def get_concept(concept_id: str, services: Services = Depends(get_services)):
    try:
        return await services.catalog.get_concept(concept_id)
    except GapwiseError as e:
        raise http_error(e) from e


@app.put("/concepts/{concept_id}")
async def update_concept(
    concept_id: str, req: ConceptRequest, services: Services = Depends(get_services)
):
    concept = Concept(
        id=concept_id,
        name=req.name,
        domain=req.domain,
        subdomain=req.subdomain,
        description=req.description,
        tags=tuple(req.tags),
    )
    try:
        return await services.catalog.update_concept(concept)
    except GapwiseError as e:
        raise http_error(e) from e


@app.delete("/concepts/{concept_id}")
async def delete_concept(concept_id: str, services: Services = Depends(get_services)):
    try:
        await services.catalog.delete_concept(concept_id)
    except GapwiseError as e:
        raise http_error(e) from e
    return {"deleted": concept_id}


@app.get("/items")
async def list_items(services: Services = Depends(get_services)):
    return await services.catalog.list_items()


@app.post("/items", status_code=201)
async def create_item(req: ItemRequest, services: Services = Depends(get_services)):
    try:
        item_type = ItemType(req.type)
        content = content_from_dict(item_type, req.content)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid item content: {e}") from None

    try:
        return await services.catalog.create_item(
            stem=req.stem,
            item_type=item_type,
            concept_ids=req.concept_ids,
            content=content,
            difficulty=req.difficulty,
            explanation=req.explanation,
            source=req.source,
            item_id=req.id,
        )
    except GapwiseError as e:
        raise http_error(e) from e


@app.get("/items/{item_id}")
async def get_item(item_id: str, services: Services = Depends(get_services)):
    try:
        return await services.catalog.get_item(item_id)
    except GapwiseError as e:
        raise http_error(e) from e


@app.patch("/items/{item_id}")
async def update_item(
    item_id: str, req: ItemUpdateRequest, services: Services = Depends(get_services)
):
    changes = req.model_dump(exclude_none=True)
    if "concept_ids" in changes:
        changes["concept_ids"] = tuple(changes["concept_ids"])
    try:
        current = await services.catalog.get_item(item_id)
        return await services.catalog.update_item(replace(current, **changes))
    except GapwiseError as e:
        raise http_error(e) from e


@app.delete("/items/{item_id}")
async def delete_item(item_id: str, services: Services = Depends(get_services)):
    try:
        await services.catalog.delete_item(item_id)
    except GapwiseError as e:
        raise http_error(e) from e
    return {"deleted": item_id}


@app.post("/catalog/load")
async def load_catalog(req: CatalogYamlRequest, services: Services = Depends(get_services)):
    try:
        result = await services.catalog.load_yaml(req.yaml)
    except GapwiseError as e:
        raise http_error(e) from e
    return {"concepts": len(result.concepts), "items": len(result.items)}


# ---------- Attempts ----------


class AttemptRequest(BaseModel):
    item_id: str
    is_correct: bool
    confidence: int
    time_spent_ms: int = 0
    user_answer: str = ""
    session_id: str | None = None
    attempted_at: datetime | None = None
    attempt_id: str | None = None


@app.post("/attempts", status_code=201)
async def submit_attempt(req: AttemptRequest, services: Services = Depends(get_services)):
    """
    Record an attempt. 400 for malformed input, 404 for an unknown item.
    """
    outcome = await services.learning.submit_attempt(
        req.item_id,
        req.session_id,
        req.user_answer,
        req.is_correct,
        req.confidence,
        req.time_spent_ms,
        attempted_at=req.attempted_at,
        attempt_id=req.attempt_id,
    )
    if not outcome.ok:
        raise http_error(outcome.error)
    return outcome.attempt


@app.get("/items/{item_id}/attempts")
async def get_item_attempts(item_id: str, services: Services = Depends(get_services)):
    return await services.learning.get_attempts_for_item(item_id)


# ---------- Sessions ----------


class SessionRequest(BaseModel):
    session_type: str = "mixed"
    total_items: int = 0
    concept_id: str | None = None
    time_limit_ms: int | None = None


@app.get("/sessions")
async def list_sessions(services: Services = Depends(get_services)):
    return await services.learning.get_all_sessions()


@app.post("/sessions", status_code=201)
async def create_session(req: SessionRequest, services: Services = Depends(get_services)):
    try:
        return await services.learning.create_session(
            req.session_type, req.total_items, req.concept_id, req.time_limit_ms
        )
    except GapwiseError as e:
        raise http_error(e) from e


@app.post("/sessions/{session_id}/complete")
async def complete_session(session_id: str, services: Services = Depends(get_services)):
    try:
        return await services.learning.complete_session(session_id)
    except GapwiseError as e:
        raise http_error(e) from e


# ---------- Mastery & planning ----------


@app.get("/mastery")
async def get_mastery(services: Services = Depends(get_services)):
    return await services.learning.get_concept_mastery()


@app.post("/mastery/rebuild")
async def rebuild_mastery(services: Services = Depends(get_services)):
    rebuilt = await services.learning.rebuild_mastery()
    return {"rebuilt": len(rebuilt)}


@app.get("/gaps")
async def get_gaps(limit: int | None = None, services: Services = Depends(get_services)):
    return await services.learning.get_top_gaps(limit)


@app.get("/diagnostics")
async def get_diagnostics(services: Services = Depends(get_services)):
    return {"concept_ids": await services.learning.get_diagnostic_candidates()}


@app.get("/plan")
async def get_plan(
    as_of: datetime | None = None,
    max_items: int | None = Query(default=None, ge=0),
    max_minutes: float | None = Query(default=None, ge=0),
    services: Services = Depends(get_services),
):
    """
    Today's plan. Budget parameters fall back to the configured defaults.
    """
    config = services.learning.config
    budget = None
    if max_items is not None or max_minutes is not None:
        budget = PlanBudget(
            max_items=config.daily_item_budget if max_items is None else max_items,
            max_minutes=config.daily_time_budget_minutes if max_minutes is None else max_minutes,
            review_share=config.review_share,
        )
    plan = await services.learning.get_daily_plan(as_of, budget)
    return {
        "date": plan.date,
        "reviews": plan.reviews,
        "diagnostics": plan.diagnostics,
        "total_items": plan.total_items,
        "estimated_time_minutes": plan.estimated_time_minutes,
        "coverage_percent": plan.coverage_percent,
    }


@app.get("/due-count")
async def get_due_count(services: Services = Depends(get_services)):
    return {"due": await services.learning.get_due_count()}


@app.get("/next-item")
async def get_next_item(services: Services = Depends(get_services)):
    item = await services.learning.get_next_review_item()
    if item is None:
        raise HTTPException(status_code=404, detail="Nothing to study")
    return item


@app.get("/trends")
async def get_trends(services: Services = Depends(get_services)):
    return await services.learning.get_performance_trends()
