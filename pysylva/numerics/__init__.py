from __future__ import annotations

from .double_buffer import DoubleBufferingArray

__all__ = ["DoubleBufferingArray"]
