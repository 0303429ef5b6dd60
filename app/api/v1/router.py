"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    auth,
    dispatch,
    documents,
    examinations,
    marksheets,
    notifications,
    scheduled_dispatch,
)

api_router = APIRouter()

# Authentication
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"],
)

# Marksheets and the HOD approval flow
api_router.include_router(
    marksheets.router,
    prefix="/marksheets",
    tags=["Marksheets"],
)

# Examinations
api_router.include_router(
    examinations.router,
    prefix="/examinations",
    tags=["Examinations"],
)

# WhatsApp dispatch
api_router.include_router(
    dispatch.router,
    prefix="/dispatch",
    tags=["Dispatch"],
)

# Scheduled dispatch control
api_router.include_router(
    scheduled_dispatch.router,
    prefix="/scheduled-dispatch",
    tags=["Scheduled Dispatch"],
)

# Notifications
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"],
)

# Public documents (fetched by the WhatsApp provider)
api_router.include_router(
    documents.router,
    prefix="/documents",
    tags=["Documents"],
)
