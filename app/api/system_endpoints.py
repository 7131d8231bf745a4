"""
app.api.system_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~

只读的状态报告接口 —— 健康检查 + 聊天核心计数 + 房间列表。

端点:
  - ``GET /health``      → 服务状态（非 prod 环境附带计数快照）
  - ``GET /api/stats``   → 计数快照（prod 环境不可见）
  - ``GET /api/rooms``   → 房间摘要列表（prod 环境不可见）
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_chat_system
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.chat_events import RoomInfoData, StatsData
from app.services.chat_system import ChatSystem

router: APIRouter = APIRouter()


@router.get("/health", tags=["System"])
@limiter.limit(settings.HEALTH_RATE_LIMIT)
async def health_check(request: Request, system: ChatSystem = Depends(get_chat_system)) -> JSONResponse:
    """验证服务是否正常运行。

    Returns:
        包含服务状态的 JSON 响应；非 prod 环境额外附带计数快照。
    """
    content = {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "profile": settings.PROFILE,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if settings.expose_stats:
        content["stats"] = system.stats().to_wire()
    return JSONResponse(content=content)


@router.get("/api/stats", summary="获取聊天核心计数", response_model=ApiResponse[StatsData])
@limiter.limit(settings.HEALTH_RATE_LIMIT)
async def get_stats(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回在线身份数、房间数与会话数。"""
    if not settings.expose_stats:
        return JSONResponse(status_code=404, content=ApiResponse.not_found().model_dump())
    return ApiResponse.ok(data=system.stats())


@router.get("/api/rooms", summary="获取房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit(settings.HEALTH_RATE_LIMIT)
async def list_rooms(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回所有已创建房间的摘要（含空房间）。"""
    if not settings.expose_stats:
        return JSONResponse(status_code=404, content=ApiResponse.not_found().model_dump())
    return ApiResponse.ok(data=system.list_rooms())
