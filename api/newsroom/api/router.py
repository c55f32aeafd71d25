from fastapi import APIRouter

from newsroom.api.routes import comments, health, stories, topics

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(stories.router, prefix="/stories", tags=["stories"])
api_router.include_router(topics.router, prefix="/topics", tags=["topics"])
api_router.include_router(comments.router, prefix="/comments", tags=["comments"])
