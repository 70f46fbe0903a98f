"""Status and reporting surface for the ban coordinator."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from jailer.core.config import configure_logging, settings
from jailer.core.exceptions import InfractionParseError, StoreOperationError
from jailer.ip.keys import key_pattern, parse_ip
from jailer.jail.lifecycle import ServiceJailer

configure_logging(settings.DEBUG)
logger = logging.getLogger(__name__)


class InfractionReport(BaseModel):
    ip: str


class InfractionResult(BaseModel):
    ip: str
    infractions: int
    banned: bool


def render_state(prefix: str) -> str:
    # Live log contents are deliberately not rendered here
    pattern = key_pattern(prefix)
    return (
        "<html><body>\n"
        "not implemented, instead refer to:<br/>\n"
        f"<tt>redis-cli -h &lt;ip&gt; -p &lt;port&gt; --scan --pattern {pattern}</tt>\n"
        "</body></html>\n"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.jailer = await ServiceJailer.create(settings)
    logger.info(
        "Jailer started with max_retry=%s find_time=%s ban_time=%s ipset=%s",
        settings.MAX_RETRY,
        settings.FIND_TIME,
        settings.BAN_TIME,
        settings.IPSET_NAME,
    )
    try:
        yield
    finally:
        await app.state.jailer.close()


app = FastAPI(title=settings.PROJECT_NAME, version=settings.PROJECT_VERSION, lifespan=lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    """Lightweight health check for container orchestration."""
    return {"status": "ok"}


@app.get("/status", response_class=HTMLResponse)
async def state() -> HTMLResponse:
    return HTMLResponse(render_state(settings.KEY_PREFIX))


@app.post("/infractions", response_model=InfractionResult)
async def report_infraction(report: InfractionReport, request: Request) -> InfractionResult:
    """Record one infraction for an address reported by a trusted caller."""
    jailer: ServiceJailer = request.app.state.jailer

    try:
        ip = parse_ip(report.ip)
    except InfractionParseError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    try:
        length = await jailer.add_infraction(ip)
    except StoreOperationError:
        logger.exception("Failed to record infraction for ip=%s", ip.compressed)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Infraction store unavailable.",
        )

    return InfractionResult(
        ip=ip.compressed,
        infractions=min(length, jailer.engine.max_retry),
        banned=length >= jailer.engine.max_retry,
    )


if __name__ == "__main__":
    uvicorn.run("jailer.app.server:app", host=settings.HOST, port=settings.PORT, workers=1)
