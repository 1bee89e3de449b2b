# Mark services as a package and expose the extraction helpers.

from . import gemini as gemini  # noqa: F401
from . import ocr as ocr  # noqa: F401

__all__ = [
    "gemini",
    "ocr",
]
