"""Persistent target storage using JSON files."""

import json
import os
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from pydantic import ValidationError
from .errors import DuplicateTargetError, PersistenceError, TargetNotFoundError
from .models import Config, Target

# Handle platform-specific locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

_UNSET: Any = object()


class Storage:
    """File-based config store for targets with cross-process locking."""

    def __init__(self, data_dir: str = ".dbshield"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.targets_file = self.data_dir / "targets.json"
        self.config_file = self.data_dir / "config.json"
        self.lock_file = self.data_dir / "store.lock"

        # Initialize files if they don't exist
        if not self.targets_file.exists():
            self._write_json(self.targets_file, [])
        if not self.config_file.exists():
            self._write_json(self.config_file, Config().model_dump(mode="json"))

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        try:
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2, default=str)
            temp_file.replace(file_path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {file_path}: {e}") from e

    def _read_json(self, file_path: Path) -> Any:
        """Read JSON file safely."""
        if not file_path.exists():
            return [] if file_path.name.endswith("s.json") else {}
        try:
            with open(file_path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {file_path}: {e}") from e

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the exclusive store lock for a read-modify-write cycle."""
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY, 0o644)
        except OSError as e:
            raise PersistenceError(f"Cannot open lock file: {e}") from e
        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            try:
                if sys.platform == "win32":
                    msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
                else:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    def _parse_targets(self, raw: Any) -> List[Target]:
        try:
            return [Target.model_validate(item) for item in raw]
        except (TypeError, ValidationError) as e:
            raise PersistenceError(f"Malformed {self.targets_file}: {e}") from e

    def load_all(self) -> List[Target]:
        """Get all targets."""
        return self._parse_targets(self._read_json(self.targets_file))

    def get_target(self, name: str) -> Optional[Target]:
        """Get a target by name."""
        for target in self.load_all():
            if target.name == name:
                return target
        return None

    def add_target(self, target: Target) -> None:
        """Add a new target, rejecting duplicate names."""
        with self._locked():
            targets = self._read_json(self.targets_file)
            if any(item.get("name") == target.name for item in targets):
                raise DuplicateTargetError(f"Target '{target.name}' already exists")
            targets.append(target.model_dump(mode="json"))
            self._write_json(self.targets_file, targets)

    def put_target(self, target: Target) -> None:
        """Insert or replace a target's configuration by name.

        Run state (``last_run_at``, ``last_success_fingerprint``,
        ``created_at``) is kept from the stored record; only
        ``update_state`` moves it.
        """
        with self._locked():
            targets = self._read_json(self.targets_file)
            for i, item in enumerate(targets):
                if item.get("name") == target.name:
                    targets[i] = self._with_stored_state(target, item).model_dump(mode="json")
                    break
            else:
                targets.append(target.model_dump(mode="json"))
            self._write_json(self.targets_file, targets)

    def rename_target(self, old_name: str, target: Target) -> None:
        """Replace ``old_name`` with ``target`` in one locked write, keeping run state."""
        with self._locked():
            targets = self._read_json(self.targets_file)
            if any(item.get("name") == target.name for item in targets):
                raise DuplicateTargetError(f"Target '{target.name}' already exists")
            for i, item in enumerate(targets):
                if item.get("name") == old_name:
                    targets[i] = self._with_stored_state(target, item).model_dump(mode="json")
                    break
            else:
                raise TargetNotFoundError(f"Target '{old_name}' not found")
            self._write_json(self.targets_file, targets)

    def _with_stored_state(self, target: Target, item: Dict[str, Any]) -> Target:
        stored = self._parse_targets([item])[0]
        last_run_at = stored.last_run_at
        if target.last_run_at is not None and (last_run_at is None or target.last_run_at > last_run_at):
            last_run_at = target.last_run_at
        return target.model_copy(
            update={
                "last_run_at": last_run_at,
                "last_success_fingerprint": stored.last_success_fingerprint,
                "created_at": stored.created_at,
            }
        )

    def delete_target(self, name: str) -> bool:
        """Remove a target. Returns False if it did not exist."""
        with self._locked():
            targets = self._read_json(self.targets_file)
            remaining = [item for item in targets if item.get("name") != name]
            if len(remaining) == len(targets):
                return False
            self._write_json(self.targets_file, remaining)
            return True

    def update_state(
        self,
        name: str,
        last_run_at: Optional[datetime] = None,
        fingerprint: Optional[str] = _UNSET,
        enabled: Optional[bool] = None,
    ) -> Target:
        """Atomically update the run state of one target.

        ``last_run_at`` never moves backwards; ``fingerprint`` is only
        touched when passed explicitly (``None`` clears it).
        """
        with self._locked():
            targets = self._read_json(self.targets_file)
            for i, item in enumerate(targets):
                if item.get("name") != name:
                    continue
                target = self._parse_targets([item])[0]
                if last_run_at is not None and (
                    target.last_run_at is None or last_run_at > target.last_run_at
                ):
                    target.last_run_at = last_run_at
                if fingerprint is not _UNSET:
                    target.last_success_fingerprint = fingerprint
                if enabled is not None:
                    target.enabled = enabled
                targets[i] = target.model_dump(mode="json")
                self._write_json(self.targets_file, targets)
                return target
        raise TargetNotFoundError(f"Target '{name}' not found")

    def get_config(self) -> Config:
        """Get current configuration."""
        config_data = self._read_json(self.config_file)
        try:
            return Config(**config_data)
        except ValidationError as e:
            raise PersistenceError(f"Malformed {self.config_file}: {e}") from e

    def set_config(self, config: Config) -> None:
        """Update configuration."""
        with self._locked():
            self._write_json(self.config_file, config.model_dump(mode="json"))
