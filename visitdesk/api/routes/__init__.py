from fastapi import APIRouter

from visitdesk.api.routes import admin, auth, health, visitor

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(visitor.router, prefix="/visitors", tags=["visitors"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
