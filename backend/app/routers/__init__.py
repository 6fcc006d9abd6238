"""Unlist Dispatch Engine - API Routers"""
from .ops import router as ops_router

__all__ = [
    "ops_router",
]
