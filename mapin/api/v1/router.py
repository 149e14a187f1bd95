from fastapi import APIRouter

from mapin.api.v1 import auth, conversations, deep_links, maps, media, messages, users, ws

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(conversations.router)
api_router.include_router(messages.router)
api_router.include_router(media.router)
api_router.include_router(maps.router)
api_router.include_router(deep_links.router)
api_router.include_router(ws.router)
