#!/usr/bin/env python

"""
    Live notification channel for SIMPUS.

    A logged-in browser keeps one websocket open on /ws; notifications
    stored for that user are pushed down it as they are created.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from simpus.core import auth

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def live(websocket: WebSocket):
    token = websocket.query_params.get("token") or websocket.cookies.get("token")
    identity = auth.decode_token(token)
    hub = getattr(websocket.app.state, "hub", None)
    if identity is None or hub is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    hub.register(identity.user_id, websocket)
    logger.info(f"Live channel opened for {identity.username}")
    try:
        # Inbound frames are ignored; reading keeps the disconnect observable
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(identity.user_id, websocket)
        logger.info(f"Live channel closed for {identity.username}")
