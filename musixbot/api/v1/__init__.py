"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import posts, payments, jobs

api_router = APIRouter()

api_router.include_router(
    posts.router,
    prefix="/posts",
    tags=["posts"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"]
)

api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["jobs"]
)
