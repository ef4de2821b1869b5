from fastapi import APIRouter, Depends, Request, status

from library_portal.services.dashboard_stats_service import (
    DashboardStatsService,
    get_dashboard_stats_service,
)
from library_portal.utils.responses import ResponseBuilder

dashboard_stats_router = APIRouter()


@dashboard_stats_router.get(
    "/dashboard-stats",
    status_code=status.HTTP_200_OK,
    summary="Get librarian dashboard statistics",
    description="Total students, registrations in the last 30 days and students per course",
)
async def get_dashboard_stats(
    request: Request,
    dashboard_stats_service: DashboardStatsService = Depends(get_dashboard_stats_service),
):
    stats = await dashboard_stats_service.compute_stats()
    return ResponseBuilder.success(
        request=request,
        payload={"stats": stats.model_dump(by_alias=True)},
    )
