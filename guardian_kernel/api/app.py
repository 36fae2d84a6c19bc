"""
Guardian Kernel API — FastAPI endpoints.

Exposes the dual-approval workflow via a REST API for:
- Proposal creation and lookup
- Guardian responses (approve / decline), disputes and cooling cancellations
- Administrative dispute resolution
- Sweeps (normally run by the scheduler)
- Effective settings and audit trail inspection
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from guardian_kernel.config import Settings, configure_logging, get_settings
from guardian_kernel.custody.directory import GuardianDirectory, InMemoryGuardianDirectory
from guardian_kernel.models.errors import ProposalErrorCode, ProposalResult
from guardian_kernel.models.proposal import ProposalStatus
from guardian_kernel.semantics.classifier import format_proposal_diff
from guardian_kernel.service.proposals import ProposalService
from guardian_kernel.settings.store import SettingsStore
from guardian_kernel.store.proposal_store import ProposalStore
from guardian_kernel.sweeper.scheduler import SweepScheduler


# --- Request/Response Models ---

class ProposalCreateRequest(BaseModel):
    child_id: str
    proposed_by: str
    setting_type: str
    proposed_value: Any


class RespondRequest(BaseModel):
    actor_id: str
    action: str
    message: Optional[str] = None


class DisputeRequest(BaseModel):
    actor_id: str
    reason: Optional[str] = None


class CancelCoolingRequest(BaseModel):
    actor_id: str


class ResolveDisputeRequest(BaseModel):
    resolver_id: str
    resolution: str


class ChildRegistrationRequest(BaseModel):
    child_id: str
    guardian_ids: List[str]
    shared_custody: bool = True


_STATUS_CODES = {
    ProposalErrorCode.NOT_FOUND: 404,
    ProposalErrorCode.NOT_GUARDIAN: 403,
    ProposalErrorCode.NOT_SHARED_CUSTODY: 403,
    ProposalErrorCode.CANNOT_RESPOND_OWN: 403,
    ProposalErrorCode.CANNOT_DISPUTE_OWN: 403,
    ProposalErrorCode.ALREADY_RESPONDED: 409,
    ProposalErrorCode.NOT_IN_COOLING_PERIOD: 409,
    ProposalErrorCode.COOLING_ALREADY_CANCELLED: 409,
    ProposalErrorCode.PROPOSAL_EXPIRED: 410,
    ProposalErrorCode.DISPUTE_EXPIRED: 410,
    ProposalErrorCode.COOLING_PERIOD_EXPIRED: 410,
    ProposalErrorCode.COOLDOWN_ACTIVE: 429,
    ProposalErrorCode.RATE_LIMIT: 429,
    ProposalErrorCode.INVALID_SETTING: 422,
    ProposalErrorCode.INVALID_VALUE: 422,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unwrap(result: ProposalResult) -> dict:
    """Turn a ProposalResult into a response body or an HTTP error."""
    if not result.ok:
        raise HTTPException(
            _STATUS_CODES.get(result.error_code, 400),
            {"code": result.error_code.value, "message": result.error_message},
        )
    body = result.proposal.model_dump(mode="json")
    body["summary"] = format_proposal_diff(result.proposal)
    return body


# --- Application Factory ---

def create_app(
    service: Optional[ProposalService] = None,
    directory: Optional[GuardianDirectory] = None,
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = _utcnow,
    start_sweeper: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    cfg = settings or get_settings()
    configure_logging(cfg.log_level)

    if service is None:
        service = ProposalService(
            store=ProposalStore(db_path=cfg.db_path),
            directory=directory or InMemoryGuardianDirectory(),
            settings_store=SettingsStore(),
            policy=cfg.policy(),
        )
    sweeper = SweepScheduler(service, schedule=cfg.sweep_schedule, clock=clock)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        stop_event = asyncio.Event()
        task = asyncio.create_task(sweeper.run_async(stop_event)) if start_sweeper else None
        yield
        stop_event.set()
        if task is not None:
            await task

    app = FastAPI(
        title=cfg.app_name,
        description="Dual-approval safety settings for shared-custody families",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.service = service
    app.state.sweeper = sweeper

    # === PROPOSALS ===

    @app.post("/proposals")
    def create_proposal(req: ProposalCreateRequest):
        """A guardian proposes a change to one safety setting."""
        result = service.create_proposal(
            child_id=req.child_id,
            proposed_by=req.proposed_by,
            setting_type=req.setting_type,
            proposed_value=req.proposed_value,
            now=clock(),
        )
        return _unwrap(result)

    @app.get("/proposals/{proposal_id}")
    def get_proposal(proposal_id: str):
        return _unwrap(service.get_proposal(proposal_id))

    @app.get("/proposals/{proposal_id}/events")
    def get_proposal_events(proposal_id: str):
        """Audit trail for one proposal."""
        _unwrap(service.get_proposal(proposal_id))
        return [e.model_dump(mode="json") for e in service.store.events_for(proposal_id)]

    @app.post("/proposals/{proposal_id}/respond")
    def respond_to_proposal(proposal_id: str, req: RespondRequest):
        """The other guardian approves or declines."""
        result = service.respond_to_proposal(
            proposal_id, req.actor_id, req.action, now=clock(), message=req.message
        )
        return _unwrap(result)

    @app.post("/proposals/{proposal_id}/dispute")
    def dispute_proposal(proposal_id: str, req: DisputeRequest):
        """The other guardian contests an emergency increase."""
        result = service.dispute_proposal(proposal_id, req.actor_id, now=clock(), reason=req.reason)
        return _unwrap(result)

    @app.post("/proposals/{proposal_id}/cancel-cooling")
    def cancel_cooling_period(proposal_id: str, req: CancelCoolingRequest):
        """Either party cancels an approved reduction before it takes effect."""
        return _unwrap(service.cancel_cooling_period(proposal_id, req.actor_id, now=clock()))

    @app.post("/proposals/{proposal_id}/resolve")
    def resolve_dispute(proposal_id: str, req: ResolveDisputeRequest):
        """Administrative resolution of a dispute."""
        result = service.resolve_dispute(proposal_id, req.resolver_id, req.resolution, now=clock())
        return _unwrap(result)

    # === CHILDREN ===

    @app.get("/children/{child_id}/proposals")
    def list_child_proposals(child_id: str, status: Optional[ProposalStatus] = None):
        return [p.model_dump(mode="json") for p in service.list_proposals(child_id, status)]

    @app.get("/children/{child_id}/proposals/pending")
    def list_pending_proposals(child_id: str):
        """Pending proposals that can still be answered."""
        return [
            p.model_dump(mode="json")
            for p in service.get_pending_proposals(child_id, now=clock())
        ]

    @app.get("/children/{child_id}/settings")
    def get_child_settings(child_id: str):
        """Effective safety settings currently in force."""
        return service.settings.snapshot(child_id)

    @app.post("/custody/children")
    def register_child(req: ChildRegistrationRequest):
        """Register a family (for testing; production custody is external)."""
        if not isinstance(service.directory, InMemoryGuardianDirectory):
            raise HTTPException(404, "Custody is managed by an external directory")
        service.directory.register_child(req.child_id, req.guardian_ids, req.shared_custody)
        return {"status": "registered", "child_id": req.child_id}

    # === SWEEPS ===

    @app.post("/sweep")
    def trigger_sweep():
        """Force a sweep (normally run by the scheduler)."""
        transitioned = sweeper.run_once(clock())
        return {
            "transitioned": [p.model_dump(mode="json") for p in transitioned],
            "count": len(transitioned),
        }

    @app.get("/sweeper/status")
    def sweeper_status():
        now = clock()
        return {
            "status": sweeper.status,
            "schedule": sweeper.schedule,
            "last_run_at": sweeper.last_run_at.isoformat() if sweeper.last_run_at else None,
            "last_transitioned": sweeper.last_transitioned,
            "next_run_at": sweeper.next_run_after(now).isoformat(),
        }

    # === AUDIT ===

    @app.get("/audit/verify")
    def verify_audit_trail():
        """Verify audit chain integrity."""
        return {
            "integrity_valid": service.store.verify_chain_integrity(),
            "total_proposals": service.store.count(),
        }

    return app


# Default application instance
app = create_app()
