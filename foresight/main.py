"""
MindHome Foresight - FastAPI Server.
HTTP-Oberflaeche fuer Beobachtungen, Patterns, Kontext und Szenarien.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException

from .config import settings
from .models import ForesightError, Horizon, PatternType
from .pass_context import setup_structured_logging
from .schemas import CalendarUpdate, ContextUpdate, ObservationBatch, ObservationIn, OccupantUpdate
from .service import ForesightService
from .temporal import date_to_moment

setup_structured_logging(settings.log_level)
logger = logging.getLogger("foresight")

service = ForesightService()


async def _connect_redis() -> Optional[aioredis.Redis]:
    try:
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        logger.info("Redis verbunden: %s", settings.redis_url)
        return client
    except Exception as e:
        logger.warning("Redis nicht verfuegbar, Snapshots deaktiviert: %s", e)
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup und Shutdown."""
    logger.info("=" * 50)
    logger.info(" MindHome Foresight startet...")
    logger.info("=" * 50)

    redis_client = await _connect_redis()
    await service.initialize(redis_client)
    service.start()
    snapshot_task = asyncio.create_task(service.snapshot_loop())

    logger.info(" MindHome Foresight bereit auf %s:%d",
                settings.foresight_host, settings.foresight_port)

    yield

    snapshot_task.cancel()
    await service.shutdown()
    if redis_client:
        await redis_client.close()
    logger.info("MindHome Foresight heruntergefahren.")


app = FastAPI(
    title="MindHome Foresight",
    description="Pattern- und Szenario-Engine fuer vorausschauende Hausautomation",
    version="1.0.0",
    lifespan=lifespan,
)


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(e))


# ----- Health / Status -----

@app.get("/api/foresight/health")
async def health():
    return {
        "status": "ok",
        "redis": service.snapshots.available,
        "patterns": len(service.pattern_engine.registry),
        "scenarios": len(service.call(service.scenario_engine.get_scenarios)),
    }


@app.get("/api/foresight/status")
async def status():
    return service.status()


# ----- Beobachtungen / Patterns -----

@app.post("/api/foresight/observations")
async def post_observation(body: ObservationIn):
    service.call(service.pattern_engine.observe, body.to_model())
    return {"recorded": True, "observations": len(service.pattern_engine.store)}


@app.post("/api/foresight/observations/import")
async def import_observations(body: ObservationBatch):
    count = service.call(service.pattern_engine.import_history,
                         [o.to_model() for o in body.observations])
    return {"imported": count, "patterns": len(service.pattern_engine.registry)}


@app.get("/api/foresight/patterns")
async def get_patterns(type: Optional[str] = None):
    if type:
        try:
            pattern_type = PatternType(type)
        except ValueError as e:
            raise _bad_request(e)
        patterns = service.call(service.pattern_engine.get_patterns_by_type, pattern_type)
    else:
        patterns = service.call(service.pattern_engine.get_patterns)
    return {"patterns": [p.to_dict() for p in patterns]}


@app.get("/api/foresight/prediction")
async def get_prediction(at: Optional[datetime] = None):
    context = service.scenario_engine.context
    moment = date_to_moment(at or service.now(), context.holidays if context else None)
    prediction = service.call(service.pattern_engine.get_prediction_for_moment, moment)
    return {"moment": moment.timestamp.isoformat(), **prediction.to_dict()}


@app.get("/api/foresight/anomalies")
async def get_anomalies(limit: int = 50):
    return {"anomalies": service.call(service.pattern_engine.get_anomalies, limit)}


# ----- Kontext -----

@app.put("/api/foresight/calendar")
async def put_calendar(body: CalendarUpdate):
    try:
        events = [e.to_model() for e in body.events]
    except ForesightError as e:
        raise _bad_request(e)
    service.call(service.scenario_engine.update_calendar, events)
    return {"events": len(events)}


@app.put("/api/foresight/context")
async def put_context(body: ContextUpdate):
    service.call(service.scenario_engine.update_external_context, body.to_model())
    return {"updated": True}


@app.put("/api/foresight/occupants/{user_id}")
async def put_occupant(user_id: str, body: OccupantUpdate):
    service.call(service.scenario_engine.update_occupant_state, user_id,
                 body.to_model(user_id, service.now()))
    return {"user_id": user_id, "is_home": body.is_home}


# ----- Szenarien -----

@app.post("/api/foresight/regenerate")
async def regenerate():
    def regenerate_and_count():
        service.scenario_engine.regenerate_scenarios()
        return len(service.scenario_engine.get_scenarios())

    return {"scenarios": service.call(regenerate_and_count)}


@app.get("/api/foresight/scenarios")
async def get_scenarios(horizon: Optional[str] = None, min_probability: Optional[float] = None):
    try:
        horizon_value = Horizon(horizon) if horizon else None
    except ValueError as e:
        raise _bad_request(e)
    scenarios = service.call(service.scenario_engine.get_scenarios, horizon_value)
    if min_probability is not None:
        scenarios = [s for s in scenarios if s.probability >= min_probability]
    return {"scenarios": [s.to_dict() for s in scenarios]}


@app.get("/api/foresight/preparations")
async def get_preparations(within: int = 30):
    actions = service.call(service.scenario_engine.get_preparations_due, within)
    return {"preparations": [a.to_dict() for a in actions]}


def run():
    import uvicorn

    uvicorn.run("foresight.main:app", host=settings.foresight_host,
                port=settings.foresight_port, log_level=settings.log_level.lower())
