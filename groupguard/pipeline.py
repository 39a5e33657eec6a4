"""登录状态事件推送：维护前端 WebSocket 连接，在登录 / 登出时广播事件。

下游模块（实时事件连接、审核日志读取等）通过订阅这些事件感知身份变化；
发送失败的连接会被自动移除。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import WebSocket

from groupguard.auth.models import CurrentUser, user_payload

logger = logging.getLogger(__name__)


class PipelineNotifier:
    """持有所有事件订阅连接，提供登录 / 登出通知"""

    def __init__(self):
        self.connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.append(websocket)
        logger.info(f"[Pipeline] 新的事件订阅，当前连接数: {len(self.connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        self.connections = [ws for ws in self.connections if ws != websocket]
        logger.info(f"[Pipeline] 事件订阅断开，当前连接数: {len(self.connections)}")

    async def on_logged_in(self, user: CurrentUser) -> None:
        """登录完成：通知下游建立实时事件连接"""
        logger.info(f"[Pipeline] 用户已登录: {user.display_name} ({user.id})")
        await self.broadcast({"type": "logged_in", "user": user_payload(user)})

    async def on_logged_out(self) -> None:
        logger.info("[Pipeline] 用户已登出")
        await self.broadcast({"type": "logged_out"})

    async def broadcast(self, data: dict[str, Any]) -> None:
        """向所有连接广播一条 JSON 消息；发送失败的连接会被移除"""
        message = json.dumps(data, ensure_ascii=False, default=str)
        disconnected = []
        for ws in self.connections:
            try:
                await ws.send_text(message)
            except Exception:
                disconnected.append(ws)
        for ws in disconnected:
            await self.disconnect(ws)
