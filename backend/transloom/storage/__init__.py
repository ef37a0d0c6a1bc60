"""
Storage Module / 存储模块
File-based paragraph store for books and chapters
基于文件的书籍与章节段落存储
"""

from .base import BaseStorage
from .books import BookStorage, update_chapter_content_in_volumes

__all__ = [
    "BaseStorage",
    "BookStorage",
    "update_chapter_content_in_volumes",
]
