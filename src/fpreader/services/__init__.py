"""fpreader Services - pure Python core (no HTTP/CLI).

Business logic shared by all driving adapters:
- cli.py (argparse CLI)
- api.py (FastAPI REST)
"""

from .image import ImageService
from .reader import ReaderSession

__all__ = [
    'ImageService',
    'ReaderSession',
]
