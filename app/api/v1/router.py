"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.payroll import router as payroll_router
from app.api.v1.sessions import router as sessions_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    payroll_router,
    prefix="/payroll",
    tags=["Planilla de Pagos"],
)

api_v1_router.include_router(
    sessions_router,
    prefix="/sessions",
    tags=["Sesiones"],
)
