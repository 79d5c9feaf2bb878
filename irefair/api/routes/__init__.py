"""
API Routes - Combines all route modules into single router.
"""

from fastapi import APIRouter

from irefair.api.routes.applicant_routes import router as applicant_router
from irefair.api.routes.apply_routes import router as apply_router
from irefair.api.routes.chatgpt_routes import router as chatgpt_router
from irefair.api.routes.cron_routes import router as cron_router
from irefair.api.routes.founder_referrer_routes import router as founder_referrer_router
from irefair.api.routes.founder_routes import router as founder_router
from irefair.api.routes.hiring_routes import router as hiring_router
from irefair.api.routes.mobile_routes import router as mobile_router
from irefair.api.routes.portal_routes import router as portal_router
from irefair.api.routes.referrer_routes import router as referrer_router

# Main API router
api_router = APIRouter()

# Include all sub-routers (mobile and portal before the broader /applicant and /referrer routers)
api_router.include_router(mobile_router)
api_router.include_router(portal_router)
api_router.include_router(applicant_router)
api_router.include_router(referrer_router)
api_router.include_router(apply_router)
api_router.include_router(hiring_router)
api_router.include_router(founder_router)
api_router.include_router(founder_referrer_router)
api_router.include_router(cron_router)
api_router.include_router(chatgpt_router)
