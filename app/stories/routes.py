"""
Story API routes.

This module exposes the story service to the page layer:
- Publish, read, update and unpublish stories
- List with author/tag filters and sorting
- Title/excerpt search

Authentication happens upstream; the caller passes the author identity.
Service errors are mapped to HTTP responses by ``register_error_handlers``.
"""

from __future__ import annotations

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from thousand_core.domain.stories import (
    QueryOptions,
    SearchOptions,
    SortField,
    SortOrder,
    StoryMetadata,
    UpdateStoryInput,
)
from thousand_core.runtime.errors import (
    BackendUnavailable,
    ConflictError,
    ServiceError,
    ValidationError,
)

from app.stories.schemas import (
    DeleteResponse,
    PublishStoryRequest,
    StoryListResponse,
    StoryWithContent,
    UpdateStoryRequest,
)
from app.stories.services.story_service import StoryService

router = APIRouter()


def get_story_service(request: Request) -> StoryService:
    """The StoryService built by the application lifespan."""
    return request.app.state.story_service


@router.get("/health")
def stories_health():
    """Health check for the stories module."""
    return {"status": "ok", "module": "stories"}


@router.post("", response_model=StoryMetadata, status_code=201)
async def publish_story(body: PublishStoryRequest, request: Request):
    """
    Publish a story of 950-1000 words.

    The text is written to the content store first, then indexed.
    """
    service = get_story_service(request)
    return await service.publish(body)


@router.get("", response_model=StoryListResponse)
async def list_stories(
    request: Request,
    author_did: str | None = None,
    tags: list[str] | None = Query(default=None),
    sort_by: SortField = SortField.PUBLISHED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """List stories, optionally by author and tags (a story must carry every tag)."""
    service = get_story_service(request)
    options = QueryOptions(
        author_did=author_did,
        tags=tags,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    result = await service.list_stories(options)
    return StoryListResponse.from_result(result, limit=limit, offset=offset)


@router.get("/search", response_model=StoryListResponse)
async def search_stories(
    request: Request,
    q: str = Query(..., min_length=1),
    author_did: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """Case-insensitive search in titles and excerpts, newest first."""
    service = get_story_service(request)
    result = await service.search_stories(
        SearchOptions(query=q, author_did=author_did, limit=limit, offset=offset)
    )
    return StoryListResponse.from_result(result, limit=limit, offset=offset)


@router.get("/{story_id}", response_model=StoryWithContent)
async def get_story(story_id: str, request: Request):
    service = get_story_service(request)
    story = await service.get_story(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return story


@router.patch("/{story_id}", response_model=StoryMetadata)
async def update_story(story_id: str, body: UpdateStoryRequest, request: Request):
    """Update title, excerpt or tags. Story text cannot be changed after publishing."""
    service = get_story_service(request)
    changes = UpdateStoryInput(**body.model_dump(exclude_unset=True))
    story = await service.update_story(story_id, changes)
    if story is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return story


@router.delete("/{story_id}", response_model=DeleteResponse)
async def delete_story(story_id: str, request: Request):
    """Unpublish a story and delete its text. Deleting twice is not an error."""
    service = get_story_service(request)
    deleted = await service.unpublish(story_id)
    return DeleteResponse(id=story_id, deleted=deleted)


# --- Error mapping ---


def _error_response(status_code: int, error: ServiceError, message: str) -> JSONResponse:
    body = error.to_dict()
    body["message"] = message
    return JSONResponse(status_code=status_code, content={"error": body})


async def _validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(422, exc, exc.message_safe)


async def _conflict_error_handler(request: Request, exc: ConflictError):
    return _error_response(409, exc, "This story conflicts with an existing one. Please try a different story.")


async def _unavailable_error_handler(request: Request, exc: BackendUnavailable):
    logger.error(f"[{exc.debug_id}] Backend unavailable: {exc.message_debug or exc.message_safe}")
    return _error_response(503, exc, "The story service is temporarily unavailable. Please retry later.")


async def _service_error_handler(request: Request, exc: ServiceError):
    logger.error(f"[{exc.debug_id}] {exc!r}: {exc.message_debug}")
    return _error_response(500, exc, "Something went wrong while handling the story.")


def register_error_handlers(app: FastAPI) -> None:
    """Map service errors to HTTP status codes."""
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(ConflictError, _conflict_error_handler)
    app.add_exception_handler(BackendUnavailable, _unavailable_error_handler)
    app.add_exception_handler(ServiceError, _service_error_handler)
