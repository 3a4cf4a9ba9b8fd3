"""SentX 调度后端

- FastAPI 实例
- SchedulerRuntime 集成（应用启动/关闭生命周期）：启动回放 + 周期轮询
- 默认消费者：按 (stream_id, id) 去重后写入日志
- 只读状态接口

聊天消息投递不在本服务范围内，下游可以通过事件总线订阅 StreamEvent。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .api.v1 import router as api_v1_router
from .config.settings import Settings, get_settings
from .consumers import DedupConsumer, LogNotifier, ProcessedEventStore
from .runtime import SchedulerRuntime
from .utils.logging import setup_logging

logger = setup_logging()


def build_runtime(settings: Settings) -> SchedulerRuntime:
    """创建调度运行时（测试中可替换，以注入假 transport）"""
    return SchedulerRuntime(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: D401 (fastapi 兼容)
    """应用生命周期：启动调度器 & 关闭清理。"""
    logger.info("Application starting ...")

    settings = get_settings()
    setup_logging(settings.log_level)

    # 已处理事件存储，启动时清理过期记录
    store = ProcessedEventStore(settings.storage.db_path)
    store.cleanup_older_than(settings.storage.retention_days)

    runtime = build_runtime(settings)
    notifier = LogNotifier()
    # 订阅必须在启动回放之前完成
    runtime.subscribe_all(DedupConsumer(notifier, store=store, name="log"))

    app.state.runtime = runtime
    app.state.notifier = notifier
    app.state.store = store

    try:
        await runtime.start()
        logger.info("Scheduler runtime started with %d streams", len(runtime.loops))
    except Exception as exc:
        logger.exception("Failed to initialise scheduler: %s", exc)
        await runtime.stop()
        store.close()
        raise

    logger.info("Application started")

    try:
        yield
    finally:
        logger.info("Application shutting down ...")
        await runtime.stop()
        store.close()
        app.state.runtime = None
        app.state.notifier = None
        app.state.store = None
        logger.info("Scheduler runtime stopped.")


app = FastAPI(
    title="SentX Scheduler Backend",
    description="SentX 限速请求调度、检查点与启动回放服务",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/", summary="健康检查 / Hello")
async def root():
    return {"message": "Hello SentX"}


@app.get("/status")
async def get_status() -> dict[str, Any]:
    """获取系统状态信息。

    返回:
        包含调度器、请求队列、令牌桶和各流状态的字典
    """
    runtime: SchedulerRuntime | None = getattr(app.state, "runtime", None)
    status: dict[str, Any] = {
        "message": "SentX Scheduler Backend is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler_running": runtime.is_running() if runtime else False,
    }
    if runtime:
        status.update(runtime.status())
    return status


@app.get("/checkpoints", summary="当前检查点")
async def get_checkpoints() -> dict[str, Any]:
    runtime: SchedulerRuntime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="调度器尚未启动")
    return runtime.checkpoints.snapshot()


# 可选：uvicorn 直接运行入口
if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("sentx_backend.app:app", host="0.0.0.0", port=8000)
