from fastapi import APIRouter

from songbattle.api.v1 import users as users_router
from songbattle.api.v1 import battles as battles_router
from songbattle.api.v1 import rounds as rounds_router
from songbattle.api.v1 import submissions as submissions_router
from songbattle.api.v1 import votes as votes_router
from songbattle.api.v1 import events as events_router


api_router = APIRouter()

api_router.include_router(users_router.router, prefix="/v1/users", tags=["users"])
api_router.include_router(battles_router.router, prefix="/v1/battles", tags=["battles"])
api_router.include_router(rounds_router.router, prefix="/v1/rounds", tags=["rounds"])
api_router.include_router(submissions_router.router, prefix="/v1/submissions", tags=["submissions"])
api_router.include_router(votes_router.router, prefix="/v1/votes", tags=["votes"])
api_router.include_router(events_router.router, prefix="/v1/events", tags=["events"])
