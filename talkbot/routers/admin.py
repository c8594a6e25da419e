from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from talkbot.config import get_settings
from talkbot.database import get_db
from talkbot.services.onboarding_service import OnboardingService
from talkbot.services.persona_service import PersonaRepository
from talkbot.services.session_store import RoomSessionStore
from talkbot.services.usage_service import usage_summary

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = get_settings().admin_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin token not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/usage")
def get_usage(
    days: int = Query(7, ge=1, le=365),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    db: Session = Depends(get_db),
):
    """Embedding and completion usage per endpoint and model."""
    _require_admin_token(x_admin_token)
    return {"days": days, "usage": usage_summary(db, days)}


@router.get("/rooms/{room_token}/onboarding")
def get_onboarding_progress(
    room_token: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)

    store = RoomSessionStore(db)
    session = store.get(room_token)
    if session is None:
        raise HTTPException(status_code=404, detail="Room not found")
    if session.persona_id is None:
        return {"room_token": room_token, "persona": None, "completed": False, "stage": "not_started"}

    persona = PersonaRepository(db, get_settings()).get(session.persona_id)
    if persona is None:
        raise HTTPException(status_code=404, detail="Persona not found")

    progress = OnboardingService(store).progress(session, persona)
    return {"room_token": room_token, "persona": persona.name, **progress}
