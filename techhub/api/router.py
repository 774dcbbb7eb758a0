from fastapi import APIRouter

from techhub.api.newsletters import router as newsletters_router

api_router = APIRouter()

# Admin routes at /admin/*
api_router.include_router(newsletters_router, prefix="/admin", tags=["newsletters"])
