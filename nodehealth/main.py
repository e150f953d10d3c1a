import logging
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from nodehealth.core.config import settings
from nodehealth.core.exceptions import NodeHealthError
from nodehealth.core.logging_config import setup_logging
from nodehealth.api.v1.api import api_router as api_v1_router
from nodehealth.api.deps import get_reconciler
from nodehealth.services.controller import Controller
from nodehealth.services.kubernetes_service import k8s_service

# Setup logging FIRST
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    version="0.1.0"
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_v1_router, prefix=settings.API_V1_STR)

controller: Optional[Controller] = None


@app.get("/", tags=["Root"], summary="Root endpoint for service status")
async def read_root():
    """Returns a welcome message and whether the controller loop is running."""
    return {
        "message": f"Welcome to the {settings.APP_NAME}",
        "controller_running": controller is not None,
        "kubernetes_available": k8s_service.is_available(),
    }


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}", exc_info=False)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(NodeHealthError)
async def node_health_exception_handler(request: Request, exc: NodeHealthError):
    logger.error(f"Controller error during request to {request.url}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception during request to {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred."},
    )


# --- Startup/Shutdown Events ---
@app.on_event("startup")
async def startup_event():
    global controller
    logger.info("Application startup...")
    logger.info(f"Watching {settings.POLICY_KIND} ({settings.POLICY_GROUP}/{settings.POLICY_VERSION})")
    logger.info(f"OpenShift conflict checks: {'enabled' if settings.ON_OPENSHIFT else 'disabled'}")
    if not settings.CONTROLLER_ENABLED:
        logger.info("Controller disabled by configuration, serving the API only.")
    elif not k8s_service.is_available():
        logger.warning("KUBERNETES CLIENT NOT AVAILABLE ON STARTUP - controller not started")
    else:
        controller = Controller(get_reconciler(), k8s_service)
        controller.start()
    logger.info(f"Application '{settings.APP_NAME}' started successfully.")


@app.on_event("shutdown")
async def shutdown_event():
    global controller
    logger.info("Application shutdown...")
    if controller is not None:
        controller.stop()
        controller = None
    logger.info("Application shutdown complete.")


def run():
    """Entry point of the nodehealth console script."""
    import uvicorn
    uvicorn.run(
        "nodehealth.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )
