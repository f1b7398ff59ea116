# lending/api/v1/api.py
from fastapi import APIRouter

from lending.api.v1.endpoints import items, reservations, returns, users

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(users.router, prefix="/users")
api_router_v1.include_router(items.router, prefix="/items")
api_router_v1.include_router(reservations.router, prefix="/reservations")
api_router_v1.include_router(returns.router, prefix="/returns")
