"""
FastAPI HTTP 服务 - 提供端点网络诊断接口

启动方式：
    uvicorn netcheck.api:app --host 0.0.0.0 --port 8000
    或 netcheck serve

API 文档：
    http://localhost:8000/docs
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Callable

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .agent import DiagnosticPipeline
from .integrations import load_config
from .models import DiagnosticRequest

logger = logging.getLogger(__name__)

# 加载环境变量
load_dotenv()

# 创建 FastAPI 应用
app = FastAPI(
    title="netcheck API",
    description="端点网络诊断 API",
    version=__version__
)

# 心跳间隔（以 0.1s 轮询次数计）
HEARTBEAT_EVERY = 20


# 请求模型
class DiagnoseRequest(BaseModel):
    """诊断请求"""
    target: str = Field(..., description="域名或URL，例如：'example.com'", min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "target": "https://example.com"
            }
        }


PipelineFactory = Callable[[DiagnosticRequest], DiagnosticPipeline]


def get_pipeline_factory() -> PipelineFactory:
    """
    流水线工厂依赖

    每次请求读取一次配置；测试中通过 dependency_overrides 替换
    """
    config = load_config()

    def factory(request: DiagnosticRequest) -> DiagnosticPipeline:
        return DiagnosticPipeline.create(config=config)

    return factory


def _parse_target(target: str) -> DiagnosticRequest:
    try:
        return DiagnosticRequest.from_target(target)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/")
async def root():
    """根路径 - 返回 API 信息"""
    return {
        "name": "netcheck API",
        "version": __version__,
        "description": "端点网络诊断 API",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now().isoformat()
    }


@app.post("/api/v1/diagnose")
async def diagnose(
    request: DiagnoseRequest,
    pipeline_factory: PipelineFactory = Depends(get_pipeline_factory)
):
    """
    执行端点网络诊断，返回完整报告

    ### 请求示例：
    ```json
    {"target": "example.com"}
    ```

    ### 响应示例：
    ```json
    {
        "run_id": "run_20260123105030_a1b2c3d4",
        "target_url": "https://example.com",
        "score": 92,
        "overall_status": "excellent",
        "issues": [],
        "recommendations": [],
        ...
    }
    ```
    """
    diagnostic_request = _parse_target(request.target)
    pipeline = pipeline_factory(diagnostic_request)
    report = await pipeline.run(diagnostic_request)
    return report.to_dict()


@app.post("/api/v1/diagnose/stream")
async def diagnose_stream(
    request: DiagnoseRequest,
    pipeline_factory: PipelineFactory = Depends(get_pipeline_factory)
):
    """
    流式返回诊断过程（SSE）

    ### 响应格式：
    Server-Sent Events (SSE) 流式推送，事件类型包括：
    - progress: 步骤状态变化
    - complete: 诊断完成，附带完整报告
    - error: 错误信息
    - done: 流结束
    """
    diagnostic_request = _parse_target(request.target)
    pipeline = pipeline_factory(diagnostic_request)
    subscription = pipeline.emitter.subscribe()

    async def event_generator():
        # 发送初始注释（保持连接）
        yield ": SSE stream started\n\n"

        diagnosis_task = asyncio.create_task(pipeline.run(diagnostic_request))
        try:
            heartbeat_counter = 0
            while True:
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=0.1)
                except asyncio.TimeoutError:
                    # 定期发送心跳保持连接
                    heartbeat_counter += 1
                    if heartbeat_counter % HEARTBEAT_EVERY == 0:
                        yield f": heartbeat {heartbeat_counter}\n\n"
                    continue

                if event is None:
                    break
                payload = {"type": "progress", **event.to_dict()}
                yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"

            report = await diagnosis_task
            payload = {"type": "complete", "report": report.to_dict()}
            yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
        except Exception as e:
            logger.exception("[API] 诊断失败")
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)}, ensure_ascii=False)}\n\n"
        finally:
            # 客户端断开时终止诊断
            if not diagnosis_task.done():
                diagnosis_task.cancel()

        yield f"data: {json.dumps({'type': 'done'})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
