"""Opengravity - a terminal coding assistant with streamed tool calling."""

__version__ = "0.1.0"

from opengravity.config import Config

__all__ = ["Config", "__version__"]
