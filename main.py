"""
FastAPI Application for the Rental Returns service.

Exposes the return engine over HTTP: load a rental transaction, open a
return session, declare item conditions, review the penalty and commit.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings, settings

from use_cases.rental_returns import (
    ConditionSplit,
    DuplicateSubmissionError,
    GatewayError,
    InMemoryTransactionGateway,
    InvalidScheduleError,
    PenaltyRules,
    ReturnEngine,
    ReturnEngineError,
    ReturnNotEligibleError,
    SessionNotFoundError,
    SplitEditError,
    SplitMode,
    TransactionGateway,
    TransactionNotFoundError,
    UnknownLineError,
    sample_transactions,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Reduce Azure SDK logging verbosity
logging.getLogger("azure.cosmos").setLevel(logging.WARNING)
logging.getLogger("azure.core").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)

# Global instances
engine: Optional[ReturnEngine] = None


def build_gateway(config: Settings) -> TransactionGateway:
    """Create the transaction gateway selected by GATEWAY_BACKEND."""
    backend = config.gateway_backend.lower()
    if backend == "memory":
        return InMemoryTransactionGateway(sample_transactions())
    if backend == "cosmos":
        from use_cases.rental_returns.cosmos_gateway import CosmosTransactionGateway
        return CosmosTransactionGateway()
    raise ValueError(f"Unknown gateway backend: {config.gateway_backend}")


def build_engine(config: Settings) -> ReturnEngine:
    return ReturnEngine(
        build_gateway(config),
        rules=PenaltyRules.from_settings(config),
        cooldown_seconds=config.submission_cooldown_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    global engine

    logger.info("Starting Rental Returns service...")
    engine = build_engine(settings)
    logger.info(f"Return engine ready ({settings.gateway_backend} gateway)")

    yield

    # Cleanup
    logger.info("Shutting down...")
    if engine:
        engine.sessions.clear_all()
        await engine.gateway.close()


# Create FastAPI app
app = FastAPI(
    title="Rental Returns",
    description="Return and penalty computation for a clothing rental point of sale",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# MODELS
# =============================================================================

class SplitBody(BaseModel):
    """One condition split as sent by the cashier."""
    condition_label: str = ""
    quantity: int = 0
    original_cost_override: Optional[int] = None

    def to_split(self) -> ConditionSplit:
        return ConditionSplit(
            condition_label=self.condition_label,
            quantity=self.quantity,
            original_cost_override=self.original_cost_override,
        )


class ModeBody(BaseModel):
    mode: SplitMode


class ReturnDateBody(BaseModel):
    """Optional actual return date; the server clock is used when omitted."""
    actual_return_date: Optional[datetime] = None


class CommitBody(BaseModel):
    notes: Optional[str] = None


# =============================================================================
# ERROR HANDLING
# =============================================================================

def _status_for(exc: ReturnEngineError) -> int:
    if isinstance(exc, (TransactionNotFoundError, SessionNotFoundError, UnknownLineError)):
        return 404
    if isinstance(exc, ReturnNotEligibleError):
        return 409
    if isinstance(exc, SplitEditError):
        return 400
    if isinstance(exc, InvalidScheduleError):
        return 422
    if isinstance(exc, DuplicateSubmissionError):
        return 429
    if isinstance(exc, GatewayError):
        return 502
    return 400


@app.exception_handler(ReturnEngineError)
async def return_engine_error_handler(request: Request, exc: ReturnEngineError):
    status_code = _status_for(exc)
    headers = None
    body = {"error": str(exc), "type": type(exc).__name__}
    if isinstance(exc, DuplicateSubmissionError):
        headers = {"Retry-After": str(exc.remaining_seconds)}
        body["remaining_seconds"] = exc.remaining_seconds
    if isinstance(exc, InvalidScheduleError) and exc.line_id:
        body["line_id"] = exc.line_id

    log = logger.error if status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# =============================================================================
# SERVICE ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "use_case": "rental_returns",
        "gateway_backend": settings.gateway_backend,
        "open_sessions": len(engine.sessions.ids()) if engine else 0,
    }


@app.get("/api/returns/rules")
async def get_rules():
    """Penalty constants and the standard condition labels."""
    return engine.rules.describe()


@app.get("/api/transactions/{code}")
async def get_transaction(code: str):
    transaction = await engine.load_transaction(code)
    return transaction.to_dict()


# =============================================================================
# RETURN SESSION ENDPOINTS
# =============================================================================

@app.post("/api/returns/{code}/session")
async def open_session(code: str):
    """Load the transaction and open a fresh return session for it."""
    session = await engine.open_session(code)
    return session.to_dict()


@app.get("/api/returns/{code}/session")
async def get_return_session(code: str):
    return engine.get_session(code).to_dict()


@app.delete("/api/returns/{code}/session")
async def discard_session(code: str):
    session = engine.get_session(code)
    engine.discard_session(session)
    return {"success": True, "transaction_code": code}


@app.put("/api/returns/{code}/lines/{line_id}/splits/{split_index}")
async def set_condition_split(code: str, line_id: str, split_index: int, body: SplitBody):
    session = engine.get_session(code)
    result = engine.set_condition_split(session, line_id, split_index, body.to_split())
    return {"line": result.to_dict(), "session": session.to_dict()}


@app.post("/api/returns/{code}/lines/{line_id}/splits")
async def add_condition_split(code: str, line_id: str, body: Optional[SplitBody] = None):
    """Add a condition split. Without a body the new split takes the unallocated units."""
    session = engine.get_session(code)
    split = body.to_split() if body else None
    result = engine.add_condition_split(session, line_id, split)
    return {"line": result.to_dict(), "session": session.to_dict()}


@app.delete("/api/returns/{code}/lines/{line_id}/splits/{split_index}")
async def remove_condition_split(code: str, line_id: str, split_index: int):
    session = engine.get_session(code)
    result = engine.remove_condition_split(session, line_id, split_index)
    return {"line": result.to_dict(), "session": session.to_dict()}


@app.put("/api/returns/{code}/lines/{line_id}/mode")
async def set_line_mode(code: str, line_id: str, body: ModeBody):
    session = engine.get_session(code)
    result = engine.set_line_mode(session, line_id, body.mode)
    return {"line": result.to_dict(), "session": session.to_dict()}


@app.post("/api/returns/{code}/advance")
async def advance_step(code: str, body: Optional[ReturnDateBody] = None):
    session = engine.get_session(code)
    transition = engine.advance_step(session, body.actual_return_date if body else None)
    return {"transition": transition.to_dict(), "session": session.to_dict()}


@app.post("/api/returns/{code}/retreat")
async def retreat_step(code: str):
    """Step back. From the first step this closes the session."""
    session = engine.get_session(code)
    transition = engine.retreat_step(session)
    return {
        "transition": transition.to_dict(),
        "session": None if transition.exited else session.to_dict(),
    }


@app.post("/api/returns/{code}/compute")
async def compute_penalty(code: str, body: Optional[ReturnDateBody] = None):
    """Compute the penalty. Invalid item conditions come back as a 400 with the validation."""
    session = engine.get_session(code)
    outcome = engine.compute_penalty(session, body.actual_return_date if body else None)
    return JSONResponse(status_code=200 if outcome.computed else 400, content=outcome.to_dict())


@app.post("/api/returns/{code}/commit")
async def commit_return(code: str, body: Optional[CommitBody] = None):
    session = engine.get_session(code)
    result = await engine.commit_return(session, body.notes if body else None)
    return JSONResponse(status_code=200 if result.success else 400, content=result.to_dict())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
