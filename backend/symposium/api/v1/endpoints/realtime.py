from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
import asyncio
import logging

from ....core.database import get_async_db
from ....core.security import Principal, decode_token
from ....models.participant import Participant
from ....services.notifier import ADMIN_CHANNEL, get_notifier

router = APIRouter()
logger = logging.getLogger(__name__)


def parse_channels(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [c.strip() for c in raw.split(",") if c.strip()]


async def allowed_channels(db: AsyncSession, principal: Principal, requested: List[str]) -> List[str]:
    """Admins may listen anywhere; participants to rounds, events and their own registrations"""
    if principal.is_admin:
        return requested

    result = await db.execute(
        select(Participant.id).filter(Participant.user_id == principal.user_id)
    )
    own = {f"participant:{pid}" for pid in result.scalars().all()}

    allowed = []
    for channel in requested:
        if channel == ADMIN_CHANNEL:
            continue
        if channel.startswith(("round:", "event:")) or channel in own:
            allowed.append(channel)
    return allowed


@router.websocket("/ws")
async def realtime_updates(
    websocket: WebSocket,
    token: str = Query(...),
    channels: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Push lifecycle notifications for the requested channels.

    Delivery is best effort; clients refetch state when they reconnect.
    """
    principal = decode_token(token)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    subscribed = await allowed_channels(db, principal, parse_channels(channels))
    await db.close()
    if not subscribed:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await websocket.send_json({"type": "subscribed", "data": {"channels": subscribed}})
    logger.info(f"WebSocket connected for {principal.user_id} on {', '.join(subscribed)}")

    async with get_notifier().subscribe(subscribed) as subscription:

        async def forward():
            async for message in subscription:
                await websocket.send_json(message)

        async def drain():
            # Clients only ping; a receive error means they went away
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning(f"WebSocket for {principal.user_id} closed with error: {exc}")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    logger.info(f"WebSocket disconnected for {principal.user_id}")
