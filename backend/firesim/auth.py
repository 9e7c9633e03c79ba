import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .enums import AppRole
from .models import AuthSession, Participant

load_dotenv()


def _get_required_secret_key() -> str:
    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        raise RuntimeError("SECRET_KEY must be set in environment")
    return secret_key


SECRET_KEY = _get_required_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "6749467")

security = HTTPBearer()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_admin_password(password: str) -> bool:
    return secrets.compare_digest(password.encode("utf-8"), ADMIN_PASSWORD.encode("utf-8"))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "typ": "access"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def issue_access_token(
    db: Session,
    role: AppRole,
    participant: Participant | None = None,
    user_agent: str | None = None,
) -> tuple[str, AuthSession]:
    """Create a backing AuthSession row and sign a token that points at it.

    The caller commits.
    """
    auth_session = AuthSession(
        role=role,
        participant_id=participant.id if participant is not None else None,
        user_agent=(user_agent or None) and user_agent[:512],
        expires_at=utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    db.add(auth_session)
    db.flush()

    subject = str(participant.id) if participant is not None else role.value.lower()
    token = create_access_token(
        data={"sub": subject, "sid": str(auth_session.id), "role": role.value}
    )
    return token, auth_session


def _is_session_expired(expires_at: datetime) -> bool:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= utcnow()


def decode_jwt_payload(token: str) -> dict:
    credentials_exception = _credentials_exception()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    if payload.get("sub") is None or payload.get("sid") is None:
        raise credentials_exception
    if payload.get("typ") != "access":
        raise credentials_exception
    return payload


def get_auth_session_from_access_token(db: Session, access_token: str) -> AuthSession:
    credentials_exception = _credentials_exception()
    payload = decode_jwt_payload(access_token)
    try:
        auth_session_id = UUID(str(payload["sid"]))
    except (KeyError, ValueError, TypeError):
        raise credentials_exception

    auth_session = db.get(AuthSession, auth_session_id)
    if auth_session is None or auth_session.is_revoked:
        raise credentials_exception
    if _is_session_expired(auth_session.expires_at):
        raise credentials_exception
    if payload.get("role") != auth_session.role.value:
        raise credentials_exception

    if auth_session.role == AppRole.STUDENT:
        if auth_session.participant_id is None or str(auth_session.participant_id) != str(payload["sub"]):
            raise credentials_exception
        # Participant rows go away with their training session.
        if db.get(Participant, auth_session.participant_id) is None:
            raise credentials_exception
    return auth_session


def get_current_auth_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> AuthSession:
    return get_auth_session_from_access_token(db, credentials.credentials)


def get_current_participant(
    auth_session: AuthSession = Depends(get_current_auth_session),
    db: Session = Depends(get_db),
) -> Participant:
    if auth_session.role != AppRole.STUDENT or auth_session.participant_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student access required")
    participant = db.get(Participant, auth_session.participant_id)
    if participant is None:
        raise _credentials_exception()
    return participant
