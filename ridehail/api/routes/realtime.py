"""
Realtime endpoint
=================

WS /ws?token=<jwt>&userType=<driver|customer|...>

The token may also be sent as ``Authorization: Bearer <jwt>``.  Customer apps
may connect without one and are treated as anonymous customers.  Messages in
both directions are ``{"event": <name>, "data": {...}}``.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ridehail.domain.errors import AuthError, InfrastructureError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

AUTH_FAILED_CLOSE_CODE = 4401
UNAVAILABLE_CLOSE_CODE = 1013


def _bearer_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    gateway = websocket.app.state.gateway
    user_type = websocket.query_params.get("userType")

    try:
        identity = await gateway.authenticate(_bearer_token(websocket), user_type)
    except AuthError as exc:
        logger.info("Rejected realtime connection: %s", exc)
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=exc.message)
        return
    except InfrastructureError as exc:
        logger.error("Cannot authenticate realtime connection: %s", exc)
        await websocket.close(code=UNAVAILABLE_CLOSE_CODE)
        return

    await websocket.accept()
    session = await gateway.attach(websocket, identity)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await gateway.notifier.send_error(
                    session, "Messages must be JSON", code="invalid_message"
                )
                continue
            await gateway.handle(session, message)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(session)
