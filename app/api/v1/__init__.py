"""
API v1 路由模块
"""
from . import resumes

__all__ = [
    "resumes",
]
