import json
import logging
import os
import stat
from pathlib import Path
from typing import Optional


TOKEN_KEY = "wbToken"
DEFAULT_TOKEN_CACHE_PATH = Path.home() / ".config" / "wb-codes" / "token.json"


class TokenStore:
    """
    Persist a single cached Wildberries token in a JSON file.

    The file holds one key, ``wbToken``. Writes go to a temp file first and are
    renamed into place, with 0600 permissions on the file. A directory created
    for the file gets 0700; an existing one is left as it is.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else DEFAULT_TOKEN_CACHE_PATH

    def load(self) -> Optional[str]:
        logger = logging.getLogger(__name__)
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read cached token at {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        token = data.get(TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def save(self, token: Optional[str]) -> None:
        logger = logging.getLogger(__name__)
        # only tighten a directory we create; a user-chosen parent keeps its mode
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(self.path.parent, stat.S_IRWXU)

        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(json.dumps({TOKEN_KEY: token}), encoding="utf-8")
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        temp_path.replace(self.path)
        if token:
            logger.debug(f"Token saved to {self.path} ({len(token)} chars)")
        else:
            logger.debug(f"Cached token cleared in {self.path}")

    def clear(self) -> None:
        self.save(None)
