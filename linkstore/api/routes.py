"""
LinkStore API routes.

Exposes the persistence facade over HTTP so a frontend under development
can use it as a fake backend:
- Persist content with its collection options
- Add, update, read and delete rows
- Paginated, sorted, searched and trigger-driven reads
- Clear and drop collections, drop the database
- Export the registry

Paged reads report the total before pagination in a response header.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from ..persistence import PersistenceService
from ..query import KeyOptions, PageOptions, SearchOptions, SortOptions
from ..schema.types import CollectionOptions, DeleteCascade
from ..triggers import RequestContext
from .settings import ApiSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["LinkStore"])

# Query parameters consumed by the route itself, never handed to triggers
_RESERVED_PARAMS = {"url", "page", "page_size", "pagination", "sort", "direction"}


# =============================================================================
# Request/Response Models
# =============================================================================


class PersistRequest(BaseModel):
    """Persist content together with its collection options."""
    options: dict[str, Any] = Field(..., description="Collection options; `name` defaults to the path")
    content: dict[str, Any] | list[dict[str, Any]] = Field(..., description="Entity or entities")


class PersistResponse(BaseModel):
    """Rows and indices per collection touched."""
    results: list[dict[str, Any]]


class AddRequest(BaseModel):
    """Add entities to a registered collection."""
    content: dict[str, Any] | list[dict[str, Any]]
    template: dict[str, Any] | None = Field(None, description="Template filling absent fields")


class UpdateRequest(BaseModel):
    """Overwrite entities of a registered collection."""
    content: dict[str, Any] | list[dict[str, Any]]


class DeleteResponse(BaseModel):
    """Affected collections, rows and paths."""
    results: list[dict[str, Any]]


# =============================================================================
# Dependencies
# =============================================================================


def get_service(request: Request) -> PersistenceService:
    """Get the persistence service from app state."""
    return request.app.state.persistence


def get_settings(request: Request) -> ApiSettings:
    """Get settings from app state."""
    return request.app.state.settings


def page_options(
    request: Request,
    page: int | None = None,
    page_size: int | None = None,
    pagination: bool = True,
) -> PageOptions | None:
    if page is None and page_size is None and pagination:
        return None
    default_size = get_service(request).config.engine.default_page_size
    return PageOptions(page=page or 1, page_size=page_size or default_size, pagination=pagination)


def sort_options(sort: str | None = None, direction: str | None = None) -> SortOptions | None:
    try:
        return SortOptions.parse(sort, direction)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid sort direction: {direction}")


def _with_total(response: Response, settings: ApiSettings, total: int) -> None:
    response.headers[settings.total_count_header] = str(total)


# =============================================================================
# Schema
# =============================================================================


@router.get("/schema")
async def export_schema(service: PersistenceService = Depends(get_service)):
    """Registry state: settings, links, triggers and the index map."""
    return service.registry.export()


# =============================================================================
# Writes
# =============================================================================


@router.post("/collections/{collection}/persist", response_model=PersistResponse)
async def persist(
    collection: str,
    body: PersistRequest,
    service: PersistenceService = Depends(get_service),
):
    """Register options and store content across linked collections."""
    options = CollectionOptions.from_dict({"name": collection, **body.options})
    results = await service.persist(body.content, options)
    return PersistResponse(results=[result.to_dict() for result in results])


@router.post("/collections/{collection}/rows", status_code=201)
async def add_rows(
    collection: str,
    body: AddRequest,
    service: PersistenceService = Depends(get_service),
):
    """Add entities, generating absent fields from the template."""
    return await service.add(collection, body.content, body.template)


@router.put("/collections/{collection}/rows")
async def update_rows(
    collection: str,
    body: UpdateRequest,
    service: PersistenceService = Depends(get_service),
):
    """Overwrite entities."""
    return await service.update(collection, body.content)


# =============================================================================
# Reads
# =============================================================================


@router.get("/collections/{collection}/rows")
async def read_page(
    collection: str,
    response: Response,
    page: PageOptions | None = Depends(page_options),
    sort: SortOptions | None = Depends(sort_options),
    service: PersistenceService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
):
    """A sorted page of rows."""
    rows = await service.read_page(collection, page, sort)
    _with_total(response, settings, service.get_counter(collection))
    return rows


@router.get("/collections/{collection}/rows/{key:path}")
async def read_row(
    collection: str,
    key: str,
    index: str | None = None,
    service: PersistenceService = Depends(get_service),
):
    """One row by key, or every row whose index value equals the key."""
    if index:
        return await service.read_by_key(collection, KeyOptions([key], index=index))
    row = await service.read_by_key(collection, KeyOptions(key))
    if row is None:
        raise HTTPException(status_code=404, detail=f"No row '{key}' in {collection}")
    return row


@router.get("/collections/{collection}/search")
async def search_rows(
    collection: str,
    term: str,
    index: str,
    response: Response,
    limit: int | None = None,
    page: PageOptions | None = Depends(page_options),
    sort: SortOptions | None = Depends(sort_options),
    service: PersistenceService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
):
    """Rows whose value at `index` contains `term`."""
    rows = await service.search(collection, SearchOptions(term, index, limit), page, sort)
    _with_total(response, settings, service.get_counter(collection))
    return rows


@router.get("/collections/{collection}/triggers/{trigger}")
async def read_by_trigger(
    collection: str,
    trigger: str,
    request: Request,
    response: Response,
    url: str = "",
    page: PageOptions | None = Depends(page_options),
    sort: SortOptions | None = Depends(sort_options),
    service: PersistenceService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
):
    """
    Rows selected by a named trigger.

    `url` stands in for the intercepted request URL; every other query
    parameter is handed to the trigger as a request parameter.
    """
    params: dict[str, list[str]] = {}
    for name, value in request.query_params.multi_items():
        if name not in _RESERVED_PARAMS:
            params.setdefault(name, []).append(value)
    context = RequestContext.from_url(url, params)
    rows = await service.read_by_trigger(collection, trigger, context, sort, page)
    _with_total(response, settings, service.get_counter(collection))
    return rows


# =============================================================================
# Deletes
# =============================================================================


@router.delete("/collections/{collection}/rows/{key:path}", response_model=DeleteResponse)
async def delete_row(
    collection: str,
    key: str,
    service: PersistenceService = Depends(get_service),
):
    """Delete one row and prune embedded copies in ancestors."""
    results = await service.delete_rows(collection, [key])
    return DeleteResponse(results=[result.to_dict() for result in results])


@router.post("/collections/{collection}/clear")
async def clear_collection(
    collection: str,
    service: PersistenceService = Depends(get_service),
):
    """Remove every row but keep the structure."""
    return {"cleared": await service.clear(collection)}


@router.delete("/collections/{collection}", response_model=DeleteResponse)
async def drop_collection(
    collection: str,
    cascade: str = DeleteCascade.KEEP.value,
    service: PersistenceService = Depends(get_service),
):
    """Drop a collection; ancestor rows are pruned unless cascade keeps them."""
    try:
        policy = DeleteCascade(cascade)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid cascade: {cascade}")
    results = await service.drop_collection(collection, policy)
    return DeleteResponse(results=[result.to_dict() for result in results])


@router.delete("/database", status_code=204)
async def drop_database(service: PersistenceService = Depends(get_service)):
    """Delete all data, settings and options."""
    await service.drop_database()
    return Response(status_code=204)
