"""Referral service routers."""

from services.referral_service.routers.admin import router as admin_router
from services.referral_service.routers.commissions import router as commissions_router
from services.referral_service.routers.customers import router as customers_router
from services.referral_service.routers.referrals import router as referrals_router
from services.referral_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "commissions_router",
    "customers_router",
    "referrals_router",
    "webhooks_router",
]
