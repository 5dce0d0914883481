from fastapi import APIRouter

from sqlproxy.api.routes import proxy

api_router = APIRouter()
api_router.include_router(proxy.router)
