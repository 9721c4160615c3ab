"""
FastAPI main application for the Alumni Tracker API.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import FastAPI, Header, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.config import config as api_config
from api.database import APIDatabaseService
from api.models import (
    ErrorResponse, HealthResponse, MessageResponse,
    SubscribeRequest, SubscriptionStatusResponse, UnsubscribeRequest
)
from scheduler.bootstrap import build_components, build_db_manager
from scheduler.scheduler_service import SnapshotScheduler
from scheduler.subscriptions import IdentityNotResolved, SubscriberNotFound, SubscriptionService
from utilities.config import config
from utilities.logger import setup_logging

logger = structlog.get_logger(__name__)

# Services created in the lifespan handler
db_service: Optional[APIDatabaseService] = None
subscription_service: Optional[SubscriptionService] = None
snapshot_scheduler: Optional[SnapshotScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global db_service, subscription_service, snapshot_scheduler

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info("Starting Alumni Tracker API", test_mode=config.test_mode)

    db_manager = build_db_manager(config)
    try:
        await db_manager.connect()
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    components = build_components(config, db_manager)
    db_service = APIDatabaseService(db_manager)
    subscription_service = components.subscriptions
    snapshot_scheduler = components.scheduler

    # Re-arm the timer for subscribers stored before a restart
    active = await subscription_service.sync_timer()
    logger.info("Subscription timer reconciled", active_subscribers=active)

    yield

    logger.info("Shutting down Alumni Tracker API")
    snapshot_scheduler.shutdown()
    await components.mailer.close()
    await db_manager.disconnect()


app = FastAPI(
    title=api_config.api_title,
    description=f"""
    {api_config.api_description}

    ## Features

    * **Compare**: diff the current alumni snapshot against the previous one
    * **Subscriptions**: opt in or out of the monthly alumni update email
    * **Health**: database and timer status
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if api_config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def _require(service, name: str):
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available"
        )
    return service


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    db_status = "unavailable"
    try:
        if db_service:
            health_info = await db_service.health_check()
            db_status = health_info.get("status", "unknown")
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.utcnow(),
        version=api_config.api_version,
        database_status=db_status,
        timer_active=snapshot_scheduler.timer_active if snapshot_scheduler else None,
        scheduler=snapshot_scheduler.get_scheduler_status() if snapshot_scheduler else None
    )


@app.get("/compare", response_model=List[str], tags=["Alumni"])
async def compare_alumni():
    """
    Describe alumni changes between the current and previous snapshots.

    Runs only the comparison; nothing is refreshed, emailed or rotated.
    """
    service = _require(db_service, "Database service")
    try:
        return await service.compare_snapshots()
    except Exception as e:
        logger.error("Failed to compare alumni", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error comparing alumni data."
        )


@app.get("/check-subscription", response_model=SubscriptionStatusResponse, tags=["Subscriptions"])
async def check_subscription(email: Optional[str] = None):
    """Report whether an email is subscribed."""
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    service = _require(subscription_service, "Subscription service")
    try:
        return SubscriptionStatusResponse(subscribed=await service.is_subscribed(email))
    except Exception as e:
        logger.error("Error checking subscription", email=email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )


@app.post("/subscribe", tags=["Subscriptions"])
async def subscribe(
    payload: Optional[SubscribeRequest] = None,
    remote_user: Optional[str] = Header(None, convert_underscores=False)
):
    """
    Subscribe to the monthly alumni updates.

    The `remote_user` header is resolved through the campus directory;
    without a directory hit the body's email and name are used.
    """
    if subscription_service is None:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    payload = payload or SubscribeRequest()
    try:
        await subscription_service.subscribe(
            remote_user=remote_user,
            email=payload.email,
            name=payload.name
        )
    except IdentityNotResolved:
        logger.warning("Subscription rejected, identity unresolved", remote_user=remote_user)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error("Error subscribing to email notifications", error=str(e))
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(status_code=status.HTTP_200_OK)


@app.post(
    "/unsubscribe",
    tags=["Subscriptions"],
    responses={404: {"model": MessageResponse}}
)
async def unsubscribe(payload: UnsubscribeRequest):
    """Unsubscribe from the monthly alumni updates."""
    if subscription_service is None:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    try:
        await subscription_service.unsubscribe(payload.email)
    except SubscriberNotFound:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=MessageResponse(message="Subscriber not found.").model_dump()
        )
    except Exception as e:
        logger.error("Error unsubscribing from email notifications", error=str(e))
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(status_code=status.HTTP_200_OK)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level="info"
    )
