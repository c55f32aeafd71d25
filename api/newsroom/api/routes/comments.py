from fastapi import APIRouter, Depends, Query, Response, status

from newsroom.api.errors import to_http_exception
from newsroom.core.auth import Caller
from newsroom.core.security import get_caller
from newsroom.schemas.comments import CommentCreateRequest, CommentEditRequest, CommentOut
from newsroom.schemas.moderation import ModerationEventOut, TransitionRequest
from newsroom.services.entities import ContentKind
from newsroom.services.errors import ModerationError
from newsroom.services.moderation import ModerationService, get_moderation_service
from newsroom.services.queries import CommentQuery, SortOrder
from newsroom.services.state_machine import Command

router = APIRouter()


@router.post("", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_comment(
    payload: CommentCreateRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> CommentOut:
    try:
        row = await service.create(ContentKind.COMMENT, caller, payload.model_dump())
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return CommentOut(**row)


@router.get("", response_model=list[CommentOut])
async def list_comments(
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    sort: SortOrder = Query(default=SortOrder.ASC),
    story_id: int | None = Query(default=None),
) -> list[CommentOut]:
    try:
        rows = await service.list_page(
            ContentKind.COMMENT,
            caller,
            CommentQuery(story_id=story_id),
            limit=limit,
            offset=offset,
            sort=sort,
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [CommentOut(**row) for row in rows]


@router.get("/{comment_id}", response_model=CommentOut)
async def get_comment(
    comment_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> CommentOut:
    try:
        row = await service.read(ContentKind.COMMENT, comment_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return CommentOut(**row)


@router.put("/{comment_id}", response_model=CommentOut)
async def edit_comment(
    comment_id: int,
    payload: CommentEditRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> CommentOut:
    try:
        row = await service.moderate(ContentKind.COMMENT, comment_id, Command.EDIT, caller, payload.model_dump())
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return CommentOut(**row)


@router.patch("/{comment_id}", response_model=CommentOut)
async def transition_comment(
    comment_id: int,
    payload: TransitionRequest,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> CommentOut | Response:
    try:
        row = await service.moderate(
            ContentKind.COMMENT,
            comment_id,
            payload.command,
            caller,
            {"reason": payload.reason},
        )
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    if row is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return CommentOut(**row)


@router.get("/{comment_id}/events", response_model=list[ModerationEventOut])
async def list_comment_events(
    comment_id: int,
    caller: Caller = Depends(get_caller),
    service: ModerationService = Depends(get_moderation_service),
) -> list[ModerationEventOut]:
    try:
        rows = await service.history(ContentKind.COMMENT, comment_id, caller)
    except ModerationError as exc:
        raise to_http_exception(exc) from exc
    return [ModerationEventOut(**row) for row in rows]
