"""
HTTP surface for the linking service.

Public endpoints are called by the signup client right after the auth
user is created. Admin endpoints require the X-Admin-Key header.
"""

import hmac
import logging
from datetime import date
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pelada.config import Settings, get_settings
from pelada.db.session import get_db
from pelada.players.admin import AdminLinkingService
from pelada.players.errors import ErrorKind, LinkingError, PersistenceError
from pelada.players.linking import PlayerLinkingService
from pelada.players.matching import CandidateMatcher, SqlCandidateMatcher
from pelada.players.outcomes import RegistrationRequest
from pelada.web.responses import ERROR_RESPONSES, NOT_FOUND_MESSAGE, ResponseComposer

logger = logging.getLogger(__name__)

app = FastAPI(title="Pelada")
composer = ResponseComposer()


# =============================================================================
# Request models
# =============================================================================

class LinkPlayerRequest(BaseModel):
    # Required fields are checked by the service so the error shape is uniform
    auth_user_id: Optional[str] = None
    email: Optional[str] = None
    birth_date: Optional[date] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    claim_token: Optional[str] = None

    @field_validator("birth_date", mode="before")
    @classmethod
    def blank_birth_date(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_registration(self) -> RegistrationRequest:
        return RegistrationRequest(
            auth_user_id=(self.auth_user_id or "").strip(),
            email=(self.email or "").strip(),
            birth_date=self.birth_date,
            first_name=self.first_name,
            last_name=self.last_name,
            position=self.position,
            claim_token=self.claim_token,
        )


class ClaimTokenRequest(BaseModel):
    token: Optional[str] = None
    user_id: Optional[str] = None


class AdminActionRequest(BaseModel):
    actor_id: Optional[str] = None


class AdminLinkRequest(BaseModel):
    pending_profile_id: str
    target_profile_id: str
    actor_id: str


# =============================================================================
# Dependencies
# =============================================================================

def get_matcher(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CandidateMatcher:
    return SqlCandidateMatcher(db, settings)


def require_admin(
    x_admin_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid admin key")


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(LinkingError)
async def linking_error_handler(request: Request, exc: LinkingError):
    if exc.kind != ErrorKind.VALIDATION:
        logger.error("%s on %s: %s", exc.kind.value, request.url.path, exc.detail)
    body, status = composer.failure(exc)
    return JSONResponse(body, status_code=status)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # Store failures that were not tagged where they happened
    logger.error("Unhandled database error on %s: %s", request.url.path, exc)
    body, status = composer.failure(PersistenceError(str(exc)))
    return JSONResponse(body, status_code=status)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request on %s: %s", request.url.path, exc.errors())
    status, message = ERROR_RESPONSES[ErrorKind.VALIDATION]
    return JSONResponse({"ok": False, "error": message}, status_code=status)


# =============================================================================
# Public endpoints
# =============================================================================

@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/functions/link-player")
def link_player(
    payload: LinkPlayerRequest,
    db: Session = Depends(get_db),
    matcher: CandidateMatcher = Depends(get_matcher),
    settings: Settings = Depends(get_settings),
):
    service = PlayerLinkingService(db, matcher=matcher, settings=settings)
    result = service.link_player(payload.to_registration())
    body, status = composer.success(result)
    return JSONResponse(body, status_code=status)


@app.post("/functions/claim-token")
def claim_token(
    payload: ClaimTokenRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = PlayerLinkingService(db, settings=settings)
    result = service.claim_with_token(payload.token, payload.user_id or "")
    body, status = composer.token_claim(result)
    return JSONResponse(body, status_code=status)


# =============================================================================
# Admin endpoints
# =============================================================================

@app.post("/admin/profiles/{profile_id}/claim-token", dependencies=[Depends(require_admin)])
def issue_claim_token(
    profile_id: str,
    payload: Optional[AdminActionRequest] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AdminLinkingService(db, settings)
    actor_id = payload.actor_id if payload else None
    try:
        token = service.issue_claim_token(profile_id, actor_id=actor_id)
    except ValueError as exc:
        logger.info("Token not issued: %s", exc)
        return JSONResponse({"ok": False, "error": NOT_FOUND_MESSAGE}, status_code=404)
    return {"ok": True, "profile_id": profile_id, "claim_token": token}


@app.get("/admin/merge-suggestions", dependencies=[Depends(require_admin)])
def list_merge_suggestions(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    suggestions = AdminLinkingService(db, settings).pending_suggestions()
    return {
        "ok": True,
        "suggestions": [
            {
                "id": s.id,
                "pending_profile_id": s.pending_profile_id,
                "suggested_profile_id": s.suggested_profile_id,
                "score": s.score,
                "reason": s.reason,
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in suggestions
        ],
    }


@app.post("/admin/merge-suggestions/{suggestion_id}/dismiss", dependencies=[Depends(require_admin)])
def dismiss_merge_suggestion(
    suggestion_id: int,
    payload: AdminActionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        AdminLinkingService(db, settings).dismiss_suggestion(suggestion_id, payload.actor_id)
    except ValueError as exc:
        logger.info("Suggestion not dismissed: %s", exc)
        return JSONResponse({"ok": False, "error": NOT_FOUND_MESSAGE}, status_code=404)
    return {"ok": True}


@app.post("/admin/link-pending", dependencies=[Depends(require_admin)])
def admin_link_pending(
    payload: AdminLinkRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = AdminLinkingService(db, settings)
    try:
        profile = service.link_pending_to_profile(
            payload.pending_profile_id,
            payload.target_profile_id,
            actor_id=payload.actor_id,
        )
    except ValueError as exc:
        logger.info("Admin link rejected: %s", exc)
        return JSONResponse({"ok": False, "error": NOT_FOUND_MESSAGE}, status_code=404)
    return {
        "ok": True,
        "profile_id": profile.id,
        "player_id": profile.player_id,
        "message": f"Usuário vinculado ao jogador {profile.display_name}!",
    }


PENDING_REVIEW_ACTIONS = {
    "approve": "approve_pending",
    "approve-observer": "approve_as_observer",
    "reject": "reject_pending",
}


@app.post("/admin/pending/{profile_id}/{action}", dependencies=[Depends(require_admin)])
def review_pending_profile(
    profile_id: str,
    action: str,
    payload: AdminActionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    method_name = PENDING_REVIEW_ACTIONS.get(action)
    if method_name is None:
        return JSONResponse({"ok": False, "error": NOT_FOUND_MESSAGE}, status_code=404)

    service = AdminLinkingService(db, settings)
    try:
        profile = getattr(service, method_name)(profile_id, actor_id=payload.actor_id)
    except ValueError as exc:
        logger.info("Pending review rejected: %s", exc)
        return JSONResponse({"ok": False, "error": NOT_FOUND_MESSAGE}, status_code=404)
    return {
        "ok": True,
        "profile_id": profile.id,
        "status": profile.status,
        "is_player": profile.is_player,
    }


def main() -> None:
    import uvicorn

    from pelada.logging_setup import configure_logging

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "pelada.web.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )


if __name__ == "__main__":
    main()
