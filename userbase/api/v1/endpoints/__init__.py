from fastapi import APIRouter
from userbase.api.v1.endpoints import auth, identities, merge, status

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(identities.router, prefix="/identities", tags=["identities"])
api_router.include_router(merge.router, prefix="/merge", tags=["merge"])
api_router.include_router(status.router, prefix="/status", tags=["status"])
