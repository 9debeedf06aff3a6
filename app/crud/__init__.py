"""
CRUD 操作模块
"""
from .resume import resume_crud, CRUDResume

__all__ = [
    "resume_crud",
    "CRUDResume",
]
