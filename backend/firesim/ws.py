from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from .auth import get_auth_session_from_access_token
from .database import SessionLocal
from .enums import AppRole
from .logger import logger
from .models import AuthSession, TrainingSession
from .schemas import ReportRead, TimerView, TrainingSessionRead
from .security.rbac import assert_session_scope, has_permission
from .services import report_service, session_service

ws_router = APIRouter()

WS_COMMAND_PERMISSIONS: dict[str, str] = {
    "toggle_report": "sessions:write",
    "start_timer": "timer:write",
    "stop_timer": "timer:write",
}

WS_MAX_COMMANDS_PER_WINDOW = 30
WS_RATE_LIMIT_WINDOW_SECONDS = 1
WS_MAX_COMMAND_ID_LENGTH = 128
WS_MAX_COMMAND_NAME_LENGTH = 64
WS_MAX_PAYLOAD_JSON_BYTES = 16_384

SESSIONS_TOPIC = "sessions"


def session_topic(session_id: str) -> str:
    return f"session:{session_id}"


def reports_topic(session_id: str) -> str:
    return f"reports:{session_id}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_ws_actor_active(db, auth_session_id: UUID) -> AuthSession:
    auth_session = db.get(AuthSession, auth_session_id)
    if auth_session is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    if auth_session.is_revoked:
        raise HTTPException(status_code=401, detail="Session revoked")
    if to_utc(auth_session.expires_at) <= utcnow():
        raise HTTPException(status_code=401, detail="Session expired")
    return auth_session


def enforce_ws_rate_limit(command_times: list[datetime]) -> None:
    now = utcnow()
    border = now - timedelta(seconds=WS_RATE_LIMIT_WINDOW_SECONDS)
    command_times[:] = [value for value in command_times if value >= border]
    if len(command_times) >= WS_MAX_COMMANDS_PER_WINDOW:
        raise HTTPException(
            status_code=429,
            detail="Too many realtime commands",
        )
    command_times.append(now)


def parse_session_id(value: Any, field_name: str = "sessionId") -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=422, detail=f"{field_name} is required")
    value = value.strip()
    if len(value) > 32:
        raise HTTPException(status_code=422, detail=f"Invalid {field_name}")
    return value


def parse_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise HTTPException(status_code=422, detail=f"{field_name} must be boolean")
    return value


class WebSocketConnectionManager:
    """Topic fan-out. A socket follows the sessions list plus at most one session."""

    def __init__(self) -> None:
        self._connections_by_topic: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    def _discard_locked(self, websocket: WebSocket, prefixes: tuple[str, ...] | None = None) -> None:
        for topic in list(self._connections_by_topic):
            if prefixes is not None and not topic.startswith(prefixes):
                continue
            sockets = self._connections_by_topic[topic]
            sockets.discard(websocket)
            if not sockets:
                del self._connections_by_topic[topic]

    async def subscribe(self, topic: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections_by_topic.setdefault(topic, set()).add(websocket)

    async def subscribe_session(
        self, session_id: str, websocket: WebSocket, include_reports: bool = False
    ) -> None:
        async with self._lock:
            self._discard_locked(websocket, ("session:", "reports:"))
            self._connections_by_topic.setdefault(session_topic(session_id), set()).add(websocket)
            if include_reports:
                self._connections_by_topic.setdefault(reports_topic(session_id), set()).add(
                    websocket
                )

    async def unsubscribe(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._discard_locked(websocket)

    async def drop_topic(self, topic: str) -> None:
        async with self._lock:
            self._connections_by_topic.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._connections_by_topic.get(topic, ()))

    async def broadcast(
        self, topic: str, payload: dict[str, Any], skip: WebSocket | None = None
    ) -> None:
        async with self._lock:
            recipients = list(self._connections_by_topic.get(topic, set()))

        stale_sockets: list[WebSocket] = []
        for websocket in recipients:
            if skip is not None and websocket is skip:
                continue
            try:
                await websocket.send_json(payload)
            except Exception:
                stale_sockets.append(websocket)

        for stale_websocket in stale_sockets:
            await self.unsubscribe(stale_websocket)


class CommandIdempotencyStore:
    def __init__(self, ttl_seconds: int = 900, max_entries: int = 20_000) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._entries: dict[str, tuple[datetime, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _cleanup_locked(self) -> None:
        expiration_border = utcnow() - timedelta(seconds=self._ttl_seconds)
        for key, (created_at, _) in list(self._entries.items()):
            if created_at < expiration_border:
                del self._entries[key]

    def _trim_locked(self) -> None:
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda key: self._entries[key][0])[:overflow]
        for key in oldest:
            del self._entries[key]

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            self._cleanup_locked()
            entry = self._entries.get(key)
            if entry is None:
                return None
            return entry[1].copy()

    async def put(self, key: str, payload: dict[str, Any]) -> None:
        async with self._lock:
            self._cleanup_locked()
            self._entries[key] = (utcnow(), payload.copy())
            self._trim_locked()


ws_connections = WebSocketConnectionManager()
ws_idempotency = CommandIdempotencyStore()


# --- Snapshots ---
def serialize_session(session_obj: TrainingSession) -> dict[str, Any]:
    return TrainingSessionRead.model_validate(session_obj).model_dump(mode="json")


def get_sessions_payload(db) -> dict[str, Any]:
    return {
        "type": "sessions",
        "sessions": [serialize_session(item) for item in session_service.list_sessions(db)],
    }


def get_session_state_payload(db, session_id: str) -> dict[str, Any]:
    session_obj = session_service.get_session_or_404(db, session_id)
    return {
        "type": "session_state",
        "sessionId": session_obj.id,
        "session": serialize_session(session_obj),
        "timer": TimerView(**session_service.timer_view(session_obj)).model_dump(mode="json"),
    }


def get_reports_payload(db, session_id: str) -> dict[str, Any]:
    return {
        "type": "reports",
        "sessionId": session_id,
        "reports": [
            ReportRead.model_validate(item).model_dump(mode="json")
            for item in report_service.list_reports(db, session_id)
        ],
    }


# --- Publishing (REST mutations call these after commit) ---
async def publish_sessions() -> None:
    if ws_connections.subscriber_count(SESSIONS_TOPIC) == 0:
        return
    with SessionLocal() as db:
        payload = get_sessions_payload(db)
    await ws_connections.broadcast(SESSIONS_TOPIC, payload)


async def publish_session_state(session_id: str) -> None:
    if ws_connections.subscriber_count(session_topic(session_id)) == 0:
        return
    with SessionLocal() as db:
        if db.get(TrainingSession, session_id) is None:
            return
        payload = get_session_state_payload(db, session_id)
    await ws_connections.broadcast(session_topic(session_id), payload)


async def publish_reports(session_id: str) -> None:
    if ws_connections.subscriber_count(reports_topic(session_id)) == 0:
        return
    with SessionLocal() as db:
        payload = get_reports_payload(db, session_id)
    await ws_connections.broadcast(reports_topic(session_id), payload)


async def publish_session_deleted(session_id: str) -> None:
    message = {"type": "session_deleted", "sessionId": session_id}
    await ws_connections.broadcast(session_topic(session_id), message)
    await ws_connections.broadcast(reports_topic(session_id), message)
    await ws_connections.drop_topic(session_topic(session_id))
    await ws_connections.drop_topic(reports_topic(session_id))
    await publish_sessions()


# --- Commands ---
def apply_toggle_report_command(db, session_id: str, payload: dict[str, Any]) -> None:
    enabled = parse_bool(payload.get("enabled"), "enabled")
    session_service.set_report_enabled(db, session_id, enabled)


def apply_start_timer_command(db, session_id: str, payload: dict[str, Any]) -> None:
    duration = payload.get("durationMinutes", session_service.TIMER_DEFAULT_MINUTES)
    session_service.start_timer(db, session_id, duration)


def apply_stop_timer_command(db, session_id: str, payload: dict[str, Any]) -> None:
    session_service.stop_timer(db, session_id)


def apply_realtime_command(db, session_id: str, command: str, payload: dict[str, Any]) -> None:
    if command == "toggle_report":
        apply_toggle_report_command(db, session_id, payload)
        return
    if command == "start_timer":
        apply_start_timer_command(db, session_id, payload)
        return
    if command == "stop_timer":
        apply_stop_timer_command(db, session_id, payload)
        return
    raise HTTPException(status_code=400, detail="Unknown command")


async def safe_send_json(websocket: WebSocket, payload: dict[str, Any]) -> None:
    try:
        await websocket.send_json(payload)
    except Exception:
        return


def command_cache_key(actor_id: UUID | str, session_id: str, command_id: str) -> str:
    return f"{actor_id}:{session_id}:{command_id}"


async def _reject_handshake(websocket: WebSocket, detail: str, code: str) -> None:
    await safe_send_json(websocket, {"type": "auth_error", "detail": detail, "code": code})
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)


@ws_router.websocket("/api/ws")
async def realtime_ws_endpoint(websocket: WebSocket):
    await websocket.accept()

    current_auth_session_id: UUID | None = None
    current_role: AppRole | None = None
    current_session_id: str | None = None
    command_times: list[datetime] = []

    try:
        auth_message = await websocket.receive_json()
        if not isinstance(auth_message, dict) or auth_message.get("type") != "auth":
            await _reject_handshake(
                websocket, "Auth handshake is required as first message", "AUTH_HANDSHAKE_REQUIRED"
            )
            return

        access_token = auth_message.get("accessToken")
        participant_id: str | None = None
        if access_token is not None and not isinstance(access_token, str):
            await _reject_handshake(websocket, "accessToken must be string", "AUTH_TOKEN_INVALID")
            return

        if access_token and access_token.strip():
            with SessionLocal() as db:
                try:
                    auth_session = get_auth_session_from_access_token(db, access_token.strip())
                except HTTPException as exc:
                    await _reject_handshake(websocket, str(exc.detail), "AUTH_TOKEN_INVALID")
                    return
                current_auth_session_id = auth_session.id
                current_role = auth_session.role
                if auth_session.participant is not None:
                    participant_id = str(auth_session.participant.id)
                    current_session_id = auth_session.participant.session_id

        await websocket.send_json(
            {
                "type": "auth_ok",
                "role": current_role.value if current_role else None,
                "participantId": participant_id,
                "sessionId": current_session_id,
                "serverTime": utcnow().isoformat(),
            }
        )

        if current_session_id is not None:
            await ws_connections.subscribe_session(current_session_id, websocket)
            with SessionLocal() as db:
                initial_state = get_session_state_payload(db, current_session_id)
            await websocket.send_json(initial_state)

        while True:
            command_id_for_error: str | None = None
            try:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    raise HTTPException(status_code=422, detail="Message must be object")

                message_type = message.get("type")
                if message_type == "ping":
                    await websocket.send_json({"type": "pong", "serverTime": utcnow().isoformat()})
                    continue

                if message_type == "subscribe_sessions":
                    await ws_connections.subscribe(SESSIONS_TOPIC, websocket)
                    with SessionLocal() as db:
                        sessions_message = get_sessions_payload(db)
                    await websocket.send_json(sessions_message)
                    continue

                if message_type == "subscribe_session":
                    target_session_id = parse_session_id(message.get("sessionId"))
                    include_reports = False
                    with SessionLocal() as db:
                        if current_auth_session_id is not None:
                            auth_session = ensure_ws_actor_active(db, current_auth_session_id)
                            assert_session_scope(auth_session, target_session_id)
                            include_reports = has_permission(auth_session, "reports:read")
                        state_message = get_session_state_payload(db, target_session_id)
                        reports_message = (
                            get_reports_payload(db, target_session_id) if include_reports else None
                        )

                    current_session_id = target_session_id
                    await ws_connections.subscribe_session(
                        current_session_id, websocket, include_reports=include_reports
                    )
                    await websocket.send_json(
                        {"type": "subscribed", "sessionId": current_session_id}
                    )
                    await websocket.send_json(state_message)
                    if reports_message is not None:
                        await websocket.send_json(reports_message)
                    continue

                if message_type != "command":
                    raise HTTPException(status_code=400, detail="Unknown message type")

                command_id = message.get("commandId")
                if not isinstance(command_id, str) or len(command_id.strip()) == 0:
                    raise HTTPException(status_code=422, detail="commandId is required")
                if len(command_id) > WS_MAX_COMMAND_ID_LENGTH:
                    raise HTTPException(status_code=422, detail="commandId is too long")
                command_id_for_error = command_id

                command_name = message.get("command")
                if not isinstance(command_name, str) or len(command_name.strip()) == 0:
                    raise HTTPException(status_code=422, detail="command is required")
                if len(command_name) > WS_MAX_COMMAND_NAME_LENGTH:
                    raise HTTPException(status_code=422, detail="command is too long")

                payload = message.get("payload", {})
                if payload is None:
                    payload = {}
                if not isinstance(payload, dict):
                    raise HTTPException(status_code=422, detail="payload must be object")
                if len(json.dumps(payload, ensure_ascii=False)) > WS_MAX_PAYLOAD_JSON_BYTES:
                    raise HTTPException(status_code=413, detail="payload is too large")

                target_session_id = current_session_id
                if message.get("sessionId") is not None:
                    target_session_id = parse_session_id(message.get("sessionId"))
                if target_session_id is None:
                    raise HTTPException(status_code=422, detail="No active session selected")

                permission = WS_COMMAND_PERMISSIONS.get(command_name)
                if permission is None:
                    raise HTTPException(status_code=400, detail="Unknown command")
                if current_auth_session_id is None:
                    raise HTTPException(status_code=401, detail="Authentication required")

                enforce_ws_rate_limit(command_times)
                cache_key = command_cache_key(current_auth_session_id, target_session_id, command_id)
                cached_ack = await ws_idempotency.get(cache_key)
                if cached_ack is not None:
                    await websocket.send_json({**cached_ack, "status": "duplicate"})
                    continue

                with SessionLocal() as db:
                    auth_session = ensure_ws_actor_active(db, current_auth_session_id)
                    if not has_permission(auth_session, permission):
                        raise HTTPException(status_code=403, detail="Not enough permissions")
                    session_service.get_session_or_404(db, target_session_id)
                    apply_realtime_command(db, target_session_id, command_name, payload)
                    db.commit()
                    state_message = get_session_state_payload(db, target_session_id)

                ack_message = {
                    "type": "ack",
                    "commandId": command_id,
                    "status": "applied",
                    "command": command_name,
                    "sessionId": target_session_id,
                    "serverTime": utcnow().isoformat(),
                }
                await ws_idempotency.put(cache_key, ack_message)
                await websocket.send_json(ack_message)
                await websocket.send_json(state_message)
                await ws_connections.broadcast(
                    session_topic(target_session_id), state_message, skip=websocket
                )
                await publish_sessions()
            except HTTPException as exc:
                await safe_send_json(
                    websocket,
                    {
                        "type": "error",
                        "detail": str(exc.detail),
                        "code": "HTTP_ERROR",
                        "status": exc.status_code,
                        **({"commandId": command_id_for_error} if command_id_for_error else {}),
                    },
                )
                continue
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("Unexpected realtime error")
                await safe_send_json(
                    websocket,
                    {
                        "type": "error",
                        "detail": "Internal realtime server error",
                        "code": "INTERNAL_ERROR",
                        **({"commandId": command_id_for_error} if command_id_for_error else {}),
                    },
                )
                continue

    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Realtime connection failed")
        await safe_send_json(
            websocket,
            {
                "type": "error",
                "detail": "Internal realtime server error",
                "code": "INTERNAL_ERROR",
            },
        )
        try:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except Exception:
            return
    finally:
        await ws_connections.unsubscribe(websocket)
