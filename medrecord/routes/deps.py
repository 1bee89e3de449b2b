"""Request-scoped collaborators for the lab and export routes."""
from typing import AsyncIterator

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from medrecord.db.session import get_db
from medrecord.services.extraction import ExtractionGateway
from medrecord.services.gemini import DEFAULT_MODEL, GeminiClient
from medrecord.services.store import SqlRecordStore
from medrecord.utils.env import env_bool, env_float, env_str


def get_store(db: Session = Depends(get_db)) -> SqlRecordStore:
    return SqlRecordStore(db)


async def get_gateway() -> AsyncIterator[ExtractionGateway]:
    timeout_s = env_float("GEMINI_TIMEOUT_S", 30.0)
    async with httpx.AsyncClient(timeout=timeout_s) as http_client:
        client = GeminiClient(
            api_key=env_str("GEMINI_API_KEY"),
            http_client=http_client,
            model=env_str("GEMINI_MODEL", DEFAULT_MODEL),
            timeout_s=timeout_s,
        )
        yield ExtractionGateway(client, ocr_images=env_bool("OCR_IMAGES_ENABLED", False))
