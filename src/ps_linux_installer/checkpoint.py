"""!
@brief Durable, ordered installation milestones.
@details One file per milestone under ``<root>/checkpoints``; the file body is
the creation timestamp and its presence is the only completion signal. Files
are created with ``O_EXCL`` and fsynced before :meth:`CheckpointManager.create`
returns. Creation must follow the canonical milestone order and resets remove
files newest first, so the surviving set is always a prefix of that order.
"""

from __future__ import annotations

import datetime as _dt
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from . import constants, logging_ext


@dataclass(frozen=True)
class Checkpoint:
    name: str
    created_at: str

    def to_dict(self) -> dict:
        return {"name": self.name, "created_at": self.created_at}


def _fsync_directory(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class CheckpointManager:
    """!
    @brief Create, query, list, and reset milestone markers.
    @param root Environment root; markers live in ``root/checkpoints``.
    @param milestones Canonical order. When omitted, ordering is not enforced
    (used for read-only listing from the CLI).
    """

    def __init__(self, root: Path, milestones: Sequence[str] | None = None) -> None:
        self.directory = Path(root) / constants.CHECKPOINT_DIRNAME
        self.milestones: List[str] | None = list(milestones) if milestones is not None else None
        self._human = logging_ext.get_human_logger("checkpoint")
        self._machine = logging_ext.get_machine_logger()

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}{constants.CHECKPOINT_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def read(self, name: str) -> Checkpoint | None:
        path = self.path_for(name)
        try:
            created_at = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return Checkpoint(name=name, created_at=created_at)

    def create(self, name: str) -> Checkpoint:
        """!
        @brief Record ``name`` as completed.
        @details Write-once: an existing marker is left untouched and returned.
        @throws ValueError When ``name`` is not a known milestone or an earlier
        milestone has not been recorded yet.
        """

        if self.milestones is not None:
            if name not in self.milestones:
                raise ValueError(f"Unknown milestone: {name}")
            missing = [
                earlier
                for earlier in self.milestones[: self.milestones.index(name)]
                if not self.exists(earlier)
            ]
            if missing:
                raise ValueError(
                    f"Cannot record {name} before {', '.join(missing)}"
                )

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        timestamp = _dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="seconds")
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            existing = self.read(name)
            self._human.debug("Checkpoint %s already recorded", name)
            return existing if existing is not None else Checkpoint(name=name, created_at="")
        try:
            os.write(fd, (timestamp + "\n").encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        _fsync_directory(self.directory)

        self._human.info("Checkpoint reached: %s", name)
        self._machine.info(
            "checkpoint_created",
            extra={"event": "checkpoint_created", "checkpoint": name, "created_at": timestamp},
        )
        return Checkpoint(name=name, created_at=timestamp)

    def list(self) -> List[Checkpoint]:
        """!
        @brief Existing checkpoints, in milestone order when known.
        """

        if not self.directory.is_dir():
            return []
        names = [
            entry.name[: -len(constants.CHECKPOINT_SUFFIX)]
            for entry in self.directory.iterdir()
            if entry.is_file() and entry.name.endswith(constants.CHECKPOINT_SUFFIX)
        ]
        if self.milestones is not None:
            order = {name: index for index, name in enumerate(self.milestones)}
            names.sort(key=lambda item: (order.get(item, len(order)), item))
        else:
            names.sort(key=lambda item: (self.path_for(item).stat().st_mtime, item))
        checkpoints = []
        for name in names:
            checkpoint = self.read(name)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def last_completed(self) -> str | None:
        existing = self.list()
        return existing[-1].name if existing else None

    def reset_all(self) -> int:
        """!
        @brief Remove every checkpoint, newest first.
        @returns Number of markers removed.
        """

        removed = 0
        for checkpoint in reversed(self.list()):
            try:
                self.path_for(checkpoint.name).unlink()
            except FileNotFoundError:
                continue
            _fsync_directory(self.directory)
            removed += 1
        try:
            self.directory.rmdir()
        except OSError:
            pass
        self._machine.info("checkpoints_reset", extra={"event": "checkpoints_reset", "removed": removed})
        if removed:
            self._human.debug("Removed %d checkpoint(s)", removed)
        return removed


__all__ = ["Checkpoint", "CheckpointManager"]
