"""认证模块 FastAPI 路由"""

from fastapi import APIRouter, HTTPException, status

from groupguard.auth.models import (
    AuthResult,
    LoginRequest,
    LogoutRequest,
    SessionStatus,
    StorageLocationRequest,
    StorageLocationResponse,
    VerifyTwoFactorRequest,
)
from groupguard.auth.service import AuthService

router = APIRouter(prefix="/api/auth", tags=["认证"])


def get_app_state():
    """获取全局应用状态；未初始化时返回 500"""
    from groupguard.main import app_state

    if app_state is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="认证服务未初始化",
        )

    return app_state


def get_auth_service() -> AuthService:
    """获取认证服务实例（依赖注入）"""
    return get_app_state().auth_service


@router.post("/login", response_model=AuthResult)
async def login(request: LoginRequest) -> AuthResult:
    """用户名密码登录；可能返回 requires_2fa"""
    auth_service = get_auth_service()
    return await auth_service.login(
        username=request.username,
        password=request.password,
        remember_me=request.remember_me,
    )


@router.post("/verify-2fa", response_model=AuthResult)
async def verify_2fa(request: VerifyTwoFactorRequest) -> AuthResult:
    """提交二次验证码"""
    auth_service = get_auth_service()
    return await auth_service.verify_2fa(request.code)


@router.post("/auto-login", response_model=AuthResult)
async def auto_login() -> AuthResult:
    """使用保存的凭据自动登录"""
    auth_service = get_auth_service()
    return await auth_service.auto_login()


@router.get("/session", response_model=SessionStatus)
async def check_session() -> SessionStatus:
    """当前登录状态"""
    auth_service = get_auth_service()
    return auth_service.check_session()


@router.get("/saved-credentials")
async def has_saved_credentials():
    """是否有保存的凭据"""
    auth_service = get_auth_service()
    return {"has_saved_credentials": auth_service.has_saved_credentials()}


@router.post("/logout", response_model=AuthResult)
async def logout(request: LogoutRequest | None = None) -> AuthResult:
    """退出登录"""
    auth_service = get_auth_service()
    clear_saved = request.clear_saved if request else False
    return await auth_service.logout(clear_saved=clear_saved)


@router.get("/storage", response_model=StorageLocationResponse)
async def get_storage_location() -> StorageLocationResponse:
    """数据目录状态"""
    location = get_app_state().storage_location
    return StorageLocationResponse(
        configured=location.is_configured(),
        data_dir=str(location.get_data_dir()),
    )


@router.post("/storage", response_model=StorageLocationResponse)
async def set_storage_location(request: StorageLocationRequest) -> StorageLocationResponse:
    """设置数据目录；之后的会话存储与凭据文件都写到新目录"""
    app_state = get_app_state()
    try:
        path = app_state.storage_location.set_location(request.path)
    except OSError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"无法设置数据目录: {e}",
        )
    app_state.session_stores.reset()
    return StorageLocationResponse(configured=True, data_dir=str(path))
