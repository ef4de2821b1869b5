from fastapi import APIRouter
from fastapi.responses import JSONResponse

health_router = APIRouter()


@health_router.get("/health")
async def health_check():
    """Liveness check; touches no collaborator."""
    return JSONResponse(content={"status": "ok"})
