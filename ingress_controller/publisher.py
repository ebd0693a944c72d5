"""Atomic publication of the routing config file."""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Optional

from .exceptions import PublishError
from .logging_config import get_logger
from .models import PublishResult, RoutingConfig

logger = get_logger(__name__)


class ConfigPublisher:
    """Writes the routing config so readers only ever see a complete document.

    The document is written to a temporary file in the same directory,
    flushed to disk and then renamed over the target with ``os.replace``.
    A failed publish leaves the previous file in place.
    """

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)

    def publish(self, routing_config: RoutingConfig) -> PublishResult:
        """Publish ``routing_config``.

        Returns:
            PublishResult with ``changed`` False when the file already held
            the same bytes, in which case nothing is written.

        Raises:
            PublishError: If the document could not be written or renamed.
        """
        payload = routing_config.to_json().encode("utf-8")
        digest = hashlib.sha256(payload).hexdigest()

        if self._current_bytes() == payload:
            logger.debug("Routing config unchanged, skipping write", path=str(self.config_path), digest=digest)
            return PublishResult(path=str(self.config_path), changed=False, digest=digest)

        directory = self.config_path.parent
        tmp_path: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.config_path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.config_path)
            tmp_path = None
            self._fsync_directory(directory)
        except OSError as e:
            logger.error("Failed to publish routing config", path=str(self.config_path), error=str(e))
            raise PublishError(f"cannot publish {self.config_path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass

        logger.info("Routing config published", path=str(self.config_path),
                    mappings=len(routing_config.ip_mappings), digest=digest)
        return PublishResult(path=str(self.config_path), changed=True, digest=digest)

    def withdraw(self) -> bool:
        """Remove the config file. Returns True if a file was removed."""
        try:
            self.config_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PublishError(f"cannot remove {self.config_path}: {e}") from e
        logger.info("Routing config withdrawn", path=str(self.config_path))
        return True

    def read(self) -> Optional[RoutingConfig]:
        """Return the currently published config, or None if there is none."""
        payload = self._current_bytes()
        if payload is None:
            return None
        return RoutingConfig.model_validate_json(payload)

    def _current_bytes(self) -> Optional[bytes]:
        try:
            return self.config_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read current routing config", path=str(self.config_path), error=str(e))
            return None

    @staticmethod
    def _fsync_directory(directory: Path) -> None:
        # The rename itself is atomic; this only makes it durable across a crash
        try:
            fd = os.open(directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass
        finally:
            os.close(fd)
