"""
phishtrace Web API
FastAPI backend accepting Output Records and returning them enriched
"""

import os
from datetime import datetime, timezone
from typing import Any, Optional, Union

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from phishtrace import __version__
from phishtrace.config import load_env_files, load_settings
from phishtrace.errors import InvalidRecordError
from phishtrace.models import OutputRecord
from phishtrace.pipeline import enumerate_urls, investigate

# Load .env once at import, before any request builds its settings.
load_env_files()

app = FastAPI(
    title="phishtrace",
    description="Redirect-chain enumeration and network attribution for phishing mail",
    version=__version__,
)


class SenderIn(BaseModel):
    ip: str
    context: Optional[str] = None
    position: Optional[int] = None


class SeedIn(BaseModel):
    url: str
    source: Optional[str] = None


class InvestigateRequest(BaseModel):
    senders: list[Union[str, SenderIn]] = Field(default_factory=list)
    seeds: list[Union[str, SeedIn]] = Field(default_factory=list)
    run_id: Optional[int] = None
    subject: Optional[str] = None

    # Per-request overrides; the server environment supplies the rest.
    timeout: Optional[float] = None
    max_redirects: Optional[int] = None
    deadline: Optional[float] = None


MAX_SEEDS = 200


def _record_from_request(request: InvestigateRequest) -> OutputRecord:
    if len(request.seeds) > MAX_SEEDS:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_SEEDS} URL seeds per request")

    payload: dict[str, Any] = request.model_dump(
        include={"senders", "seeds", "run_id", "subject"}
    )
    try:
        return OutputRecord.from_dict(payload)
    except InvalidRecordError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _settings_for(request: InvestigateRequest):
    return load_settings(
        timeout=request.timeout,
        max_redirects=request.max_redirects,
        run_deadline=request.deadline,
    )


@app.get("/api/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/investigate")
async def investigate_record(request: InvestigateRequest):
    """Enumerate redirect chains and attribute every host and sender address"""
    record = _record_from_request(request)
    output = await investigate(record, _settings_for(request))
    return output.to_dict()


@app.post("/api/enumerate")
async def enumerate_record(request: InvestigateRequest):
    """Enumerate redirect chains only"""
    record = _record_from_request(request)
    output = await enumerate_urls(record, _settings_for(request))
    return output.to_dict()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.getenv("PHISHTRACE_API_HOST", "127.0.0.1"),
        port=int(os.getenv("PHISHTRACE_API_PORT", "8000")),
    )
