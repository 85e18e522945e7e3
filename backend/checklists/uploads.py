from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .directories import UploadResult
from .errors import TransportError

logger = logging.getLogger(__name__)

ALLOWED_EVIDENCE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".pdf"})
UPLOAD_URL_PREFIX = "/uploads/"


@dataclass
class LocalUploadService:
    upload_dir: Path

    def upload(self, filename: str, data: bytes) -> UploadResult:
        suffix = Path(filename or "").suffix.lower()
        if suffix not in ALLOWED_EVIDENCE_EXTENSIONS:
            raise TransportError(f"Tipo de archivo no permitido: {suffix or 'sin extensión'}")
        if not data:
            raise TransportError("Archivo requerido")
        stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
        stored_name = f"checklist-evidence-{stamp}{suffix}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            (self.upload_dir / stored_name).write_bytes(data)
        except OSError as exc:
            logger.warning("Evidence upload failed for %s: %s", filename, exc)
            raise TransportError("Error al subir archivo", cause=exc) from exc
        logger.info("Stored checklist evidence %s (%d bytes)", stored_name, len(data))
        return UploadResult(url=f"{UPLOAD_URL_PREFIX}{stored_name}")

    def resolve(self, url: str) -> Path:
        """Map a public upload URL back to the stored file."""
        name = Path(url[len(UPLOAD_URL_PREFIX):] if url.startswith(UPLOAD_URL_PREFIX) else url).name
        return self.upload_dir / name
