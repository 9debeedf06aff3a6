"""
FastAPI 主应用入口

简历接收与处理流水线服务
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.routing import APIRoute
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.core.config import settings
from app.core.database import init_db, close_db, AsyncSessionLocal
from app.core.response import success_response, DictResponse
from app.core.exceptions import register_exception_handlers
from app.api import api_router
from app.services.pipeline.factory import build_pipeline


def custom_generate_unique_id(route: APIRoute) -> str:
    """
    自定义 OpenAPI operationId 生成函数

    使用路由函数名作为 operationId，生成更简短的 API 名称
    """
    return route.name


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理

    启动时初始化数据库并组装流水线，关闭时停止后台任务并释放连接
    """
    logger.info("启动应用: {}", settings.app_name)
    logger.info("环境: {}", settings.app_env)
    logger.info("调试模式: {}", settings.debug)

    # 初始化数据库
    await init_db()
    logger.info("数据库初始化完成")

    pipeline = build_pipeline(settings, AsyncSessionLocal)
    app.state.pipeline = pipeline
    pipeline.scheduler.start()
    if not pipeline.llm.is_configured():
        logger.warning("LLM_API_KEY 未配置，转写与 AI 增强阶段将以 AuthConfigError 失败")

    yield

    # 被中断的记录租约到期后由重试扫描回收
    await pipeline.shutdown()
    await close_db()
    logger.info("应用已关闭")


def create_app() -> FastAPI:
    """
    创建 FastAPI 应用实例
    """
    app = FastAPI(
        title=settings.app_name,
        description="简历接收、解析与 AI 增强流水线 API",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        generate_unique_id_function=custom_generate_unique_id,
    )

    # 注册异常处理器
    register_exception_handlers(app)

    # 注册路由
    app.include_router(api_router, prefix="/api/v1")

    # 健康检查
    @app.get("/health", tags=["系统"], response_model=DictResponse)
    async def health_check(request: Request):
        """健康检查接口"""
        data = {"status": "healthy"}
        pipeline = getattr(request.app.state, "pipeline", None)
        if pipeline is not None:
            data["llm"] = pipeline.llm.get_status()
            data["workers"] = pipeline.pool.get_status()
        return success_response(data=data)

    # 根路径
    @app.get("/", tags=["系统"], response_model=DictResponse)
    async def root():
        """API 根路径"""
        return success_response(data={
            "name": settings.app_name,
            "version": "1.0.0",
            "docs": "/docs" if settings.debug else None,
        })

    # 配置 CORS（必须放在最后添加，这样它会最先执行）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


# 创建应用实例
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.debug,
    )
