"""Single-page frontend shell, served for the index and the error pages."""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import HTTPException
from fastapi.responses import FileResponse

logger = logging.getLogger(__name__)


def index_response(index_path: str, *, missing_status: int = 404) -> FileResponse:
    path = Path(index_path)
    if not path.is_file():
        logger.error("Cannot open index file: %s", index_path)
        detail = "Not found" if missing_status == 404 else "Internal server error"
        raise HTTPException(status_code=missing_status, detail=detail)
    return FileResponse(path, media_type="text/html")
