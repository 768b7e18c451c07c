"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from formsync.api.webhooks import router as webhooks_router
from formsync.api.airtable_admin import router as airtable_admin_router
from formsync.api.responses import router as responses_router
from formsync.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(airtable_admin_router)
api_router.include_router(responses_router)
api_router.include_router(health_router)
