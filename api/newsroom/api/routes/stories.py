from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from newsroom.api.errors import to_http_exception
from newsroom.core.auth import Caller
from newsroom.core.security import get_caller
from newsroom.schemas.moderation import ModerationEventOut, TransitionRequest
from newsroom.schemas.stories import (
    StoryCreateRequest,
    StoryEditRequest,
    StoryOut,
    StoryState,
    StoryTopicRequest,
)
from newsroom.services.entities import ContentKind, StoryState as StoryStateEnum
from newsroom.services.errors import ModerationError
from newsroom.services.moderation import ModerationService, get_moderation_service
from newsroom.services.queries import SortOrder, StoryQuery
from newsroom.services.state_machine import Command

router = APIRouter()


@router.post("", response_model=StoryOut, status_code=status.HTTP_201_CREATED)
async def create_story(
    payload: StoryCreateRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.create(ContentKind.STORY, caller, payload.model_dump(exclude_unset=True))
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.get("", response_model=list[StoryOut])
async def list_stories(
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    sort: SortOrder = Query(default=SortOrder.ASC),
    name: str | None = Query(default=None, max_length=50),
    content: str | None = Query(default=None, max_length=500),
    min_date: datetime | None = Query(default=None),
    max_date: datetime | None = Query(default=None),
    state: StoryState | None = Query(default=None),
    topic_id: int | None = Query(default=None),
) -> list[StoryOut]:
    if min_date is not None and max_date is not None and min_date > max_date:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="min_date must not exceed max_date")

    query = StoryQuery(
        name=name,
        content=content,
        min_date=min_date,
        max_date=max_date,
        state=StoryStateEnum(state) if state else None,
        topic_id=topic_id,
    )
    try:
        rows = await service.list_page(ContentKind.STORY, caller, query, limit=limit, offset=offset, sort=sort)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [StoryOut(**row) for row in rows]


@router.get("/{story_id}", response_model=StoryOut)
async def get_story(
    story_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.read(ContentKind.STORY, story_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.put("/{story_id}", response_model=StoryOut)
async def edit_story(
    story_id: int,
    payload: StoryEditRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.moderate(
            ContentKind.STORY,
            story_id,
            Command.EDIT,
            caller,
            payload.model_dump(exclude_none=True),
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.patch("/{story_id}", response_model=StoryOut)
async def transition_story(
    story_id: int,
    payload: TransitionRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.moderate(
            ContentKind.STORY,
            story_id,
            payload.command,
            caller,
            {"reason": payload.reason},
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.delete("/{story_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_story(
    story_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> Response:
    try:
        await service.moderate(ContentKind.STORY, story_id, Command.DELETE, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{story_id}/topics", response_model=StoryOut)
async def attach_story_topic(
    story_id: int,
    payload: StoryTopicRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.moderate(
            ContentKind.STORY,
            story_id,
            Command.ATTACH_TOPIC,
            caller,
            {"topic_id": payload.topic_id},
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.delete("/{story_id}/topics/{topic_id}", response_model=StoryOut)
async def detach_story_topic(
    story_id: int,
    topic_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> StoryOut:
    try:
        row = await service.moderate(
            ContentKind.STORY,
            story_id,
            Command.DETACH_TOPIC,
            caller,
            {"topic_id": topic_id},
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return StoryOut(**row)


@router.get("/{story_id}/events", response_model=list[ModerationEventOut])
async def list_story_events(
    story_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> list[ModerationEventOut]:
    try:
        rows = await service.history(ContentKind.STORY, story_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [ModerationEventOut(**row) for row in rows]
