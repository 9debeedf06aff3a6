"""
API 路由模块
"""
from fastapi import APIRouter

from .v1 import resumes

# 创建主路由
api_router = APIRouter()

# 注册各模块路由
api_router.include_router(
    resumes.router,
    prefix="/resumes",
    tags=["简历处理"]
)
