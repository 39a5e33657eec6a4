"""GroupGuard：FastAPI 入口。

本模块负责：
- 应用启动与生命周期（lifespan）
- 认证核心各组件的初始化与注入
- 注册路由、中间件与事件推送 WebSocket 端点
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from groupguard.auth.client import ClientFactory
from groupguard.auth.credentials import CredentialStore
from groupguard.auth.login import LoginFlow, SessionRestorer
from groupguard.auth.routes import router as auth_router
from groupguard.auth.service import AuthService
from groupguard.auth.session_store import SessionStoreProvider
from groupguard.config import AppConfig, StorageLocation, load_config
from groupguard.pipeline import PipelineNotifier

# 配置根日志格式，便于排查问题
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """全局应用状态，持有认证核心各组件的引用。

    供路由模块通过 main.app_state 访问，避免循环依赖。
    """

    config: AppConfig
    storage_location: StorageLocation
    session_stores: SessionStoreProvider
    pipeline: PipelineNotifier
    auth_service: AuthService


# 全局状态（供路由模块导入使用）
app_state: AppState = None  # type: ignore


def build_app_state(config: AppConfig) -> AppState:
    """按配置组装各组件"""
    storage_location = StorageLocation(
        config_path=config.storage_config_path,
        default_dir=config.default_data_dir,
    )
    storage_location.initialize()

    session_stores = SessionStoreProvider(storage_location)
    factory = ClientFactory(config)
    pipeline = PipelineNotifier()

    auth_service = AuthService(
        login_flow=LoginFlow(factory, session_stores),
        restorer=SessionRestorer(factory, session_stores, timeout=config.restore_timeout_seconds),
        credentials=CredentialStore(storage_location),
        pipeline=pipeline,
    )

    return AppState(
        config=config,
        storage_location=storage_location,
        session_stores=session_stores,
        pipeline=pipeline,
        auth_service=auth_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时初始化组件，关闭时释放客户端连接。"""
    global app_state

    logger.info("Starting GroupGuard...")
    app_state = build_app_state(load_config())
    logger.info(f"GroupGuard started. Data dir: {app_state.storage_location.get_data_dir()}")

    yield

    logger.info("Shutting down GroupGuard...")
    await app_state.auth_service.close()


app = FastAPI(
    title="GroupGuard",
    description="VRChat group moderation console — authentication and session service",
    version="0.1.0",
    lifespan=lifespan,
)

# 桌面端界面从本地页面调用，允许跨域
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)


@app.get("/api/health")
async def health():
    """健康检查：返回运行状态与当前是否已登录。"""
    return {
        "status": "ok",
        "is_logged_in": app_state.auth_service.is_authenticated() if app_state else False,
    }


@app.websocket("/ws/events")
async def events_endpoint(websocket: WebSocket):
    """事件订阅入口：连接后接收 logged_in / logged_out 推送。"""
    await app_state.pipeline.connect(websocket)
    try:
        while True:
            # 客户端无需发送内容，仅用于保持连接
            await websocket.receive_text()
    except WebSocketDisconnect:
        await app_state.pipeline.disconnect(websocket)
