from fastapi import APIRouter, Depends, Query, Response, status

from newsroom.api.errors import to_http_exception
from newsroom.core.auth import Caller
from newsroom.core.security import get_caller
from newsroom.schemas.moderation import ModerationEventOut, TransitionRequest
from newsroom.schemas.topics import TopicCreateRequest, TopicEditRequest, TopicOut
from newsroom.services.entities import ContentKind
from newsroom.services.errors import ModerationError
from newsroom.services.moderation import ModerationService, get_moderation_service
from newsroom.services.queries import SortOrder, TopicQuery
from newsroom.services.state_machine import Command

router = APIRouter()


@router.post("", response_model=TopicOut, status_code=status.HTTP_201_CREATED)
async def create_topic(
    payload: TopicCreateRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> TopicOut:
    try:
        row = await service.create(ContentKind.TOPIC, caller, payload.model_dump(exclude_none=True))
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return TopicOut(**row)


@router.get("", response_model=list[TopicOut])
async def list_topics(
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    sort: SortOrder = Query(default=SortOrder.ASC),
    name: str | None = Query(default=None, max_length=50),
    parent_id: int | None = Query(default=None),
) -> list[TopicOut]:
    try:
        rows = await service.list_page(
            ContentKind.TOPIC,
            caller,
            TopicQuery(name=name, parent_id=parent_id),
            limit=limit,
            offset=offset,
            sort=sort,
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [TopicOut(**row) for row in rows]


@router.get("/{topic_id}", response_model=TopicOut)
async def get_topic(
    topic_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> TopicOut:
    try:
        row = await service.read(ContentKind.TOPIC, topic_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return TopicOut(**row)


@router.put("/{topic_id}", response_model=TopicOut)
async def edit_topic(
    topic_id: int,
    payload: TopicEditRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> TopicOut:
    # An explicit "parent_id": null orphans the topic, so only unset fields are dropped.
    try:
        row = await service.moderate(
            ContentKind.TOPIC,
            topic_id,
            Command.EDIT,
            caller,
            payload.model_dump(exclude_unset=True),
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return TopicOut(**row)


@router.patch("/{topic_id}", response_model=TopicOut)
async def transition_topic(
    topic_id: int,
    payload: TransitionRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> TopicOut | Response:
    try:
        row = await service.moderate(ContentKind.TOPIC, topic_id, payload.command, caller, {"reason": payload.reason})
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    if row is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return TopicOut(**row)


@router.delete("/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(
    topic_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> Response:
    try:
        await service.moderate(ContentKind.TOPIC, topic_id, Command.DELETE, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{topic_id}/events", response_model=list[ModerationEventOut])
async def list_topic_events(
    topic_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> list[ModerationEventOut]:
    try:
        rows = await service.history(ContentKind.TOPIC, topic_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [ModerationEventOut(**row) for row in rows]
