"""
API router aggregation

- webhooks: payment provider notifications
- utils: health check
"""
from fastapi import APIRouter

from app.api.routes import utils, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router)  # /webhooks/*
api_router.include_router(utils.router)  # /utils/*
