"""Auth endpoints — JWT login against users.yaml, profile lookup, logout."""

import datetime

import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from collection_utils import load_users, verify_password
from config import JWT_EXPIRY_H, JWT_SECRET

router = APIRouter()
bearer = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"


class LoginRequest(BaseModel):
    # Username or account email
    username: str
    password: str


# ── Tokens ────────────────────────────────────────────────────────────────────

def make_token(username: str, role: str = "user") -> str:
    """Sign a JWT carrying the username and role, valid for JWT_EXPIRY_H hours."""
    issued = datetime.datetime.now(datetime.timezone.utc)
    claims = {
        "sub":  username,
        "role": role,
        "iat":  issued,
        "exp":  issued + datetime.timedelta(hours=JWT_EXPIRY_H),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict | None:
    """Return the token's claims, or None if the signature or expiry check fails."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    return claims if claims.get("sub") else None


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    """Dependency: the users.yaml record behind the request's Bearer token.

    Raises:
        HTTPException: 401 when the header is missing, the token does not
                       verify, or the account no longer exists.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = decode_token(credentials.credentials)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    users = load_users()
    record = users.get(claims["sub"])
    if record is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return {"username": claims["sub"], **record}


def _find_account(login: str, users: dict) -> str | None:
    if login in users:
        return login
    wanted = login.lower()
    return next(
        (name for name, rec in users.items() if (rec.get("email") or "").lower() == wanted),
        None,
    )


def _profile(user: dict) -> dict:
    username = user["username"]
    return {
        "username":     username,
        "email":        user.get("email", ""),
        "display_name": user.get("display_name", username),
        "role":         user.get("role", "user"),
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/login")
def login(body: LoginRequest):
    """Exchange a username (or email) and password for a signed JWT.

    Returns:
        Dict with 'token' and the account's public 'user' profile.

    Raises:
        HTTPException: 401 if the account is unknown or the password is wrong.
    """
    users = load_users()
    username = _find_account(body.username.strip(), users)
    if username is None or not verify_password(username, body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    profile = _profile({"username": username, **users[username]})
    return {"token": make_token(username, profile["role"]), "username": username, "user": profile}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return _profile(user)


@router.post("/logout")
def logout():
    # Tokens are stateless; the client discards its copy
    return {"status": "logged out"}
