import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from executor.automation_engine import AutomationEngine
from models.automation import TriggerType
from scheduler.scheduler_loop import SchedulerLoop

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
)
logger = logging.getLogger("automation_engine")


def _flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = AutomationEngine.from_env()
    if _flag("AUTOMATION_INIT_SCHEMA"):
        await engine.init_schema()
    app.state.engine = engine

    scheduler = None
    scheduler_task = None
    if _flag("AUTOMATION_SCHEDULER_ENABLED"):
        scheduler = SchedulerLoop(engine, int(os.getenv("AUTOMATION_SWEEP_INTERVAL_SECONDS", "60")))
        scheduler_task = asyncio.create_task(scheduler.start())

    logger.info("AUTOMATION SERVICE STARTED")

    yield

    if scheduler:
        scheduler.stop()
        scheduler_task.cancel()
    await engine.dispose()
    logger.info("AUTOMATION SERVICE STOPPED")


app = FastAPI(title="CRM Automation Engine", lifespan=lifespan)


def get_engine(request: Request) -> AutomationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Automation engine is not initialised")
    return engine


class TriggerRequest(BaseModel):
    trigger_type: TriggerType
    organization_id: int
    contact: Dict[str, Any]
    payload: Dict[str, Any] = Field(default_factory=dict)


class SweepRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=1000)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/v1/triggers")
async def handle_trigger(body: TriggerRequest, engine: AutomationEngine = Depends(get_engine)):
    if "id" not in body.contact:
        raise HTTPException(status_code=422, detail="contact.id is required")

    logger.info(f"Received trigger {body.trigger_type.value} for organization {body.organization_id}")
    data = {**body.payload, "contact": body.contact, "organization_id": body.organization_id}
    return await engine.handle_trigger(body.trigger_type.value, data)


@app.post("/api/v1/enrollments/process")
async def process_enrollments(body: Optional[SweepRequest] = None, engine: AutomationEngine = Depends(get_engine)):
    limit = body.limit if body else None
    return await engine.process_pending_enrollments(limit)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8050")))
