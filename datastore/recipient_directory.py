from __future__ import annotations
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from settings import get_settings

logger = logging.getLogger(__name__)


class RecipientDirectory:
    """Registered users and their push tokens, optionally persisted as JSON.

    A user may be registered without a token; such users are kept but never
    surface from :meth:`list_addresses`.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._tokens: Dict[str, Optional[str]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def register(self, user_id: str, token: Optional[str]) -> None:
        cleaned = token.strip() if token else None
        with self._lock:
            self._tokens[user_id] = cleaned or None
            self._persist()

    def remove(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self._tokens:
                return False
            del self._tokens[user_id]
            self._persist()
            return True

    def get(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(user_id)

    def list_addresses(self) -> List[str]:
        """Return every non-empty token once, in registration order."""

        with self._lock:
            tokens = list(self._tokens.values())
        return list(dict.fromkeys(token for token in tokens if token))

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(json.dumps(self._tokens, indent=2))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Recipient directory file unreadable; starting empty",
                extra={"reason": str(self.persistence_path)},
            )
            data = {}

        if not isinstance(data, dict):
            return
        for user_id, token in data.items():
            self._tokens[str(user_id)] = token if isinstance(token, str) and token else None


@lru_cache
def build_default_directory(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> RecipientDirectory:
    settings = get_settings()
    directory_name = settings.directory_name if name is None else name
    directory_path = settings.directory_persistence_path if path is None else path
    persistence = Path(directory_path) if directory_path else None
    return RecipientDirectory(name=directory_name, persistence_path=persistence)
