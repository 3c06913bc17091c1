"""
Reading and writing the docker-compose deployment file.

Every read-modify-write of the document goes through `ComposeStore.transaction`,
which holds an in-process lock shared by all stores on the same file and an
exclusive ``flock`` on a sibling lock file, so concurrent writers from threads
or separate processes cannot lose each other's updates.
"""

import fcntl
import logging
import os
import stat
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import yaml

from .models import ComposeService


# --- Custom Exceptions ---

class ComposeStoreError(Exception):
    """Base exception for deployment file errors."""
    pass


class ComposeFileError(ComposeStoreError):
    """Raised when the deployment file is not a valid compose document."""
    pass


class ComposeLockTimeout(ComposeStoreError):
    """Raised when the deployment file lock cannot be acquired in time."""
    pass


# One lock per resolved path, shared by every store in the process
_path_locks: Dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    with _path_locks_guard:
        return _path_locks.setdefault(path, threading.Lock())


def empty_document() -> Dict[str, Any]:
    return {"services": {}}


class ComposeStore:
    def __init__(self, path: Path, lock_timeout: float = 10.0):
        self.path = Path(path).resolve()
        self.lock_path = self.path.with_name(f".{self.path.name}.lock")
        self._lock_timeout = lock_timeout
        self._thread_lock = _thread_lock_for(self.path)

    def _parse(self, text: str) -> Dict[str, Any]:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ComposeFileError(f"Invalid YAML in {self.path}: {e}") from e

        if document is None:
            return empty_document()
        if not isinstance(document, dict):
            raise ComposeFileError(f"{self.path} does not contain a YAML mapping.")

        services = document.get("services")
        if services is None:
            document["services"] = {}
        elif not isinstance(services, dict):
            raise ComposeFileError(f"'services' in {self.path} must be a mapping.")
        return document

    def _write_text(self, text: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write using a temporary file in the same directory
        fd, tmp_path_str = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", text=True
        )
        tmp_path = Path(tmp_path_str)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                tmp_file.write(text)
            if self.path.exists():
                os.chmod(tmp_path, stat.S_IMODE(self.path.stat().st_mode))
            os.replace(tmp_path, self.path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def load(self) -> Dict[str, Any]:
        """Load the document; a missing file is an empty document."""
        if not self.path.exists():
            return empty_document()
        return self._parse(self.path.read_text(encoding="utf-8"))

    def save(self, document: Dict[str, Any]):
        self._write_text(
            yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
        )

    @contextmanager
    def lock(self) -> Iterator[None]:
        """
        Hold exclusive access to the deployment file.

        Raises:
            ComposeLockTimeout: If the lock is not acquired within the timeout.
        """
        deadline = time.monotonic() + self._lock_timeout
        if not self._thread_lock.acquire(timeout=self._lock_timeout):
            raise ComposeLockTimeout(
                f"Could not lock {self.path} within {self._lock_timeout} seconds"
            )
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a") as lock_file:
                while True:
                    try:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except OSError:
                        if time.monotonic() >= deadline:
                            raise ComposeLockTimeout(
                                f"Could not lock {self.path} within "
                                f"{self._lock_timeout} seconds"
                            )
                        time.sleep(0.05)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self._thread_lock.release()

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """
        Load the document under the lock and write it back on success.

        If the block raises, nothing is written.
        """
        with self.lock():
            document = self.load()
            yield document
            self.save(document)
            logging.debug(f"Wrote {self.path}")

    def entries(self, document: Optional[Dict[str, Any]] = None) -> Dict[str, ComposeService]:
        """Service entries of the document, in document order."""
        if document is None:
            document = self.load()
        return {
            name: ComposeService.from_document(entry)
            for name, entry in document["services"].items()
        }

    def read_raw(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def write_raw(self, text: str):
        """Replace the whole file after checking it parses as a compose document."""
        self._parse(text)
        with self.lock():
            self._write_text(text)
        logging.info(f"Replaced {self.path} with raw content")
