"""
Session API routes.

Endpoints:
    GET   /session           - Current session state and user
    POST  /session/register  - Create the local profile and sign in
    POST  /session/login     - Sign in through the configured credential verifier
    POST  /session/unlock    - Resume the stored session after a biometric check
    PATCH /session/user      - Update the signed-in user's profile
    POST  /session/logout    - Clear the stored session
    PUT   /session/api-key   - Store the assistant API key (encrypted)
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from magda.api.deps import get_current_user, get_services
from magda.models.user import RegisterInput, User, UserUpdate
from magda.services.container import Services
from magda.services.session_service import SessionState

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SessionResponse(BaseModel):
    state: SessionState
    user: Optional[User] = None
    error: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str = ""
    provider: str = "email"


class ApiKeyRequest(BaseModel):
    api_key: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/session", response_model=SessionResponse)
async def get_session(services: Services = Depends(get_services)):
    session = services.session
    return SessionResponse(state=session.state, user=session.user, error=session.error)


@router.post("/session/register", response_model=User, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterInput, services: Services = Depends(get_services)):
    return await services.session.register(payload)


@router.post("/session/login", response_model=User)
async def login(payload: LoginRequest, services: Services = Depends(get_services)):
    return await services.session.login(payload.email, payload.password, payload.provider)


@router.post("/session/unlock", response_model=User)
async def unlock_with_biometrics(services: Services = Depends(get_services)):
    """Called by the client after the device's biometric prompt succeeded."""
    return await services.session.unlock_with_biometrics()


@router.patch("/session/user", response_model=User)
async def update_user(
    payload: UserUpdate,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
):
    return await services.session.update_user(payload)


@router.post("/session/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(services: Services = Depends(get_services)):
    await services.session.logout()


@router.put("/session/api-key", status_code=status.HTTP_204_NO_CONTENT)
async def save_api_key(
    payload: ApiKeyRequest,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
):
    await services.credentials.save_api_key(payload.api_key)
