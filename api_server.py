import asyncio
import logging
from typing import Optional, Set

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from call_gateway import GatewayFailure
from multi_agent_research import (
    InvalidSessionStateError,
    PipelineOrchestrator,
    SessionNotFoundError,
)
from pipeline_monitor import state

# ABOUTME: FastAPI server exposing the research session lifecycle and monitoring endpoints.
# ABOUTME: Sessions run as background tasks; callers poll state and answer clarification requests.

logger = logging.getLogger(__name__)

app = FastAPI(title="Research Pipeline API")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to frontend URL
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_orchestrator: Optional[PipelineOrchestrator] = None
_backgroundRuns: Set[asyncio.Task] = set()


class CreateSessionBody(BaseModel):
    query: str
    maxRounds: Optional[int] = None
    wait: bool = False


class ClarificationBody(BaseModel):
    answer: str
    wait: bool = False


class FollowUpBody(BaseModel):
    question: str


def setOrchestrator(orchestrator: PipelineOrchestrator):
    """Install the orchestrator and subscribe the monitoring state to its events."""
    global _orchestrator
    _orchestrator = orchestrator
    orchestrator.addListener(state.onPipelineEvent)
    orchestrator.executors.gateway.addListener(state.onGatewayCall)


def getOrchestrator() -> PipelineOrchestrator:
    if _orchestrator is None:
        setOrchestrator(PipelineOrchestrator.fromConfig())
    return _orchestrator


def _notFound(sessionId: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Session {sessionId} not found")


async def _runSession(sessionId: str):
    orchestrator = getOrchestrator()
    session = await orchestrator.runSession(sessionId)
    logger.info(f"Session {sessionId[:8]} paused or finished in {session.phase.value}")


async def _startOrAwait(sessionId: str, wait: bool):
    if wait:
        await _runSession(sessionId)
        return
    # Run in background so API remains responsive
    task = asyncio.create_task(_runSession(sessionId))
    _backgroundRuns.add(task)
    task.add_done_callback(_backgroundRuns.discard)


@app.post("/api/research-sessions", status_code=201)
async def _createSession(body: CreateSessionBody):
    orchestrator = getOrchestrator()
    try:
        sessionId = orchestrator.createSession(body.query, body.maxRounds)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await _startOrAwait(sessionId, body.wait)
    return orchestrator.getSessionState(sessionId)


@app.get("/api/research-sessions/{sessionId}")
async def _getSessionState(sessionId: str):
    try:
        return getOrchestrator().getSessionState(sessionId)
    except SessionNotFoundError:
        raise _notFound(sessionId)


@app.post("/api/research-sessions/{sessionId}/clarification")
async def _submitClarification(sessionId: str, body: ClarificationBody):
    orchestrator = getOrchestrator()
    try:
        orchestrator.submitClarificationAnswer(sessionId, body.answer)
    except SessionNotFoundError:
        raise _notFound(sessionId)
    except InvalidSessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await _startOrAwait(sessionId, body.wait)
    return orchestrator.getSessionState(sessionId)


@app.post("/api/research-sessions/{sessionId}/cancel")
async def _cancelSession(sessionId: str):
    orchestrator = getOrchestrator()
    try:
        cancelled = orchestrator.cancelSession(sessionId)
    except SessionNotFoundError:
        raise _notFound(sessionId)
    return {"cancelled": cancelled, "session": orchestrator.getSessionState(sessionId)}


@app.post("/api/research-sessions/{sessionId}/follow-up")
async def _askFollowUp(sessionId: str, body: FollowUpBody):
    try:
        answer = await getOrchestrator().askFollowUp(sessionId, body.question)
    except SessionNotFoundError:
        raise _notFound(sessionId)
    except InvalidSessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except GatewayFailure as e:
        raise HTTPException(status_code=502, detail={"kind": e.kind.value, "reason": e.reason})
    return {"question": body.question, "answer": answer}


@app.get("/api/research-sessions/{sessionId}/findings")
async def _listFindings(sessionId: str):
    try:
        return getOrchestrator().listFindings(sessionId)
    except SessionNotFoundError:
        raise _notFound(sessionId)


@app.get("/api/research-sessions/{sessionId}/dialogue")
async def _listDialogue(sessionId: str):
    try:
        return getOrchestrator().listDialogue(sessionId)
    except SessionNotFoundError:
        raise _notFound(sessionId)


@app.get("/api/status")
async def _getStatus():
    """Polling endpoint for the frontend to get session and provider activity"""
    return state.to_dict()


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
