"""Local storage helpers for uploaded medical documents."""
from __future__ import annotations

import os
import re
import uuid
from pathlib import Path
from typing import Optional, Tuple

PACKAGE_UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"


def upload_root() -> Path:
    root = Path((os.getenv("UPLOAD_ROOT") or "").strip() or PACKAGE_UPLOAD_DIR)
    root.mkdir(parents=True, exist_ok=True)
    return root


def sanitize_filename(name: Optional[str]) -> str:
    name = os.path.basename(name or "file")
    name = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
    return name or "file"


def store_local_upload(data: bytes, original_name: Optional[str], patient_id: str = "") -> Tuple[str, str]:
    """Persist the raw upload under <root>/<patient_id>/ and return (path, stored_name)."""
    folder = upload_root()
    if patient_id:
        folder = folder / sanitize_filename(patient_id)
        folder.mkdir(parents=True, exist_ok=True)
    suffix = Path(original_name or "").suffix.lower()
    safe_suffix = suffix if len(suffix) <= 10 else ""
    stored_name = f"{uuid.uuid4().hex}{safe_suffix}"
    path = folder / stored_name
    path.write_bytes(data)
    return str(path), stored_name


def read_upload(path: str) -> bytes:
    return Path(path).read_bytes()


__all__ = ["store_local_upload", "read_upload", "sanitize_filename", "upload_root"]
