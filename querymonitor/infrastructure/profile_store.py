"""
Durable record of the active connection profile.

While monitoring runs, the profile lives in a single JSON document so a
restarted process can resume without user interaction. The document is
replaced wholesale on every start and removed on stop.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from querymonitor.domain.models import ConnectionProfile
from querymonitor.errors import StorageError
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)


class ProfileStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def save(self, profile: ConnectionProfile) -> None:
        """Write the profile atomically (temp file + rename)."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Owner-only from creation: the document holds the password.
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(profile.to_persisted(), f, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"cannot persist monitoring profile: {exc}") from exc
        log.info("Monitoring profile persisted", extra={"path": str(self.path)})

    def load(self) -> Optional[ConnectionProfile]:
        """
        Return the persisted profile, or None when there is none.

        An unreadable document is logged and treated as absent so a corrupt
        file cannot keep the process from booting.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            log.error("Cannot read monitoring profile", extra={"path": str(self.path), "error": str(exc)})
            return None

        try:
            return ConnectionProfile.model_validate_json(raw)
        except ValidationError as exc:
            log.error(
                "Ignoring invalid monitoring profile",
                extra={"path": str(self.path), "errors": exc.error_count()},
            )
            return None

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot remove monitoring profile: {exc}") from exc

    def exists(self) -> bool:
        return self.path.exists()


__all__ = ["ProfileStore"]
