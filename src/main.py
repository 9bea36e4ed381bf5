# main.py (project root)
import os
import uvicorn
from fastapi import FastAPI
from src.routers.auth_router import router as auth_router
from src.routers.user_router import router as user_router
from src.infrastructure.database import SessionFactory, init_db
from src.infrastructure.email import MAIL_QUEUE_INTERVAL_SECONDS, build_transport
from src.middleware.logging import RequestIdMiddleware
from src.services.background import PeriodicTask
from src.services.mail_queue import MailQueue
from src.UAA.config import settings
from src.UAA.services import sweep_expired
import structlog

MAINTENANCE_INTERVAL_SECONDS = int(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "3600"))


def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
    )


configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="NeuroCore Identity")

app.add_middleware(RequestIdMiddleware)

app.include_router(auth_router)
app.include_router(user_router)


def build_background_tasks(transport) -> list:
    async def process_mail_queue():
        async with SessionFactory() as session:
            return await MailQueue(session, transport).process_once()

    async def run_maintenance():
        async with SessionFactory() as session:
            return await sweep_expired(session, settings.token_retention)

    return [
        PeriodicTask("mail_queue", process_mail_queue, MAIL_QUEUE_INTERVAL_SECONDS),
        PeriodicTask("maintenance", run_maintenance, MAINTENANCE_INTERVAL_SECONDS),
    ]


@app.on_event("startup")
async def on_startup():
    await init_db()
    transport = build_transport()
    if not await transport.check():
        # queued mail stays pending and is retried by the queue
        logger.warning("mail_transport_unavailable")
    app.state.background_tasks = build_background_tasks(transport)
    for task in app.state.background_tasks:
        task.start()
    logger.info("app_startup")


@app.on_event("shutdown")
async def on_shutdown():
    for task in getattr(app.state, "background_tasks", []):
        await task.stop()
    logger.info("app_shutdown")


if __name__ == "__main__":
    uvicorn.run("src.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
