from fastapi import APIRouter

from library_portal.routers.auth import auth_router
from library_portal.routers.dashboard_stats import dashboard_stats_router
from library_portal.routers.health import health_router
from library_portal.routers.registration import registration_router
from library_portal.routers.students import students_router

main_router = APIRouter()

main_router.include_router(health_router, tags=["Health"])
main_router.include_router(registration_router, tags=["Registration"])
main_router.include_router(auth_router, tags=["Authentication"])
main_router.include_router(students_router, tags=["Librarian - Students"])
main_router.include_router(dashboard_stats_router, tags=["Librarian - Dashboard"])
