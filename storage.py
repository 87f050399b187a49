import logging
import os
import uuid
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class FileStorage:
    """Keeps uploaded files in a local directory served under url_prefix."""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = directory
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.directory, exist_ok=True)

    def save(self, filename: str, content: bytes) -> Dict[str, str]:
        public_id = uuid.uuid4().hex
        stored_name = f"{public_id}_{os.path.basename(filename or 'upload')}"
        with open(os.path.join(self.directory, stored_name), "wb") as f:
            f.write(content)
        logger.info("Stored upload %s (%d bytes)", stored_name, len(content))
        return {"url": f"{self.url_prefix}/{stored_name}", "public_id": public_id}

    def path_for(self, url: Optional[str]) -> Optional[str]:
        if not url or not url.startswith(self.url_prefix + "/"):
            return None
        stored_name = os.path.basename(url[len(self.url_prefix) + 1:])
        return os.path.join(self.directory, stored_name)

    def delete(self, url: Optional[str]) -> bool:
        path = self.path_for(url)
        if path is None or not os.path.exists(path):
            return False
        os.remove(path)
        logger.info("Removed upload %s", path)
        return True
