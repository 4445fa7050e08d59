"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/token  -- username/password -> JWT (public, rate-limited)
  GET  /api/v1/auth/me     -- current identity (requires auth)

Users are bootstrapped with `python main.py create-user`. Partners never log
in; they use the API key issued when their integration was created.

Security:
  POST /token is rate-limited to 10 requests/minute per IP.
  authenticate_user() equalizes timing between unknown users and bad passwords.
  Cache-Control: no-store on token responses.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ErrorDetail, LoginRequest, MeResponse, TokenResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token
from core.config import get_settings

router = APIRouter()


@limiter.limit("10/minute")
@router.post("/auth/token", response_model=TokenResponse)
def issue_token(request: Request, body: LoginRequest) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail=ErrorDetail(code="invalid_credentials", message="Invalid username or password.").model_dump(),
        )
    expires_in = get_settings().token_expire_seconds
    token = create_access_token(user.id, user.username, user.role, expire_seconds=expires_in)
    content = TokenResponse(access_token=token, expires_in=expires_in).model_dump(by_alias=True)
    return JSONResponse(content=content, headers={"Cache-Control": "no-store"})


@router.get("/auth/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(id=user.id, username=user.username, role=user.role)
