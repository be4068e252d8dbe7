"""
Per-run scratch files.

Every path a run writes is derived from its run identifier, so concurrent
runs never collide, and every registered path is removed when the
workspace scope exits, whichever way it exits.
"""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex


def workspace_paths(run_id: str, scratch_dir: Path) -> Dict[str, Path]:
    """Scratch paths for a run. Distinct run ids give disjoint path sets."""
    return {
        "body": scratch_dir / f"{run_id}.pdf",
        "output": scratch_dir / f"{run_id}_out.pdf",
        "toc_text": scratch_dir / f"{run_id}_toc.txt",
        "cover": scratch_dir / f"{run_id}_cover.pdf",
    }


@dataclass
class Workspace:
    """
    Scoped owner of a run's scratch files.

    Use as an async context manager; cleanup is best effort and never
    raises, so it cannot mask the run's own outcome.
    """

    run_id: str
    scratch_dir: Path
    body_path: Path
    output_path: Path
    toc_text_path: Path
    cover_path: Path
    _registered: List[Path] = field(default_factory=list, repr=False)

    @classmethod
    def create(cls, scratch_dir: Path, run_id: Optional[str] = None) -> "Workspace":
        run_id = run_id or new_run_id()
        paths = workspace_paths(run_id, scratch_dir)
        workspace = cls(
            run_id=run_id,
            scratch_dir=scratch_dir,
            body_path=paths["body"],
            output_path=paths["output"],
            toc_text_path=paths["toc_text"],
            cover_path=paths["cover"],
        )
        for path in paths.values():
            workspace.register(path)
        return workspace

    @property
    def paths(self) -> List[Path]:
        """Every path this workspace will delete."""
        return list(self._registered)

    def register(self, path: Path) -> Path:
        """Track an additional artifact for cleanup."""
        if path not in self._registered:
            self._registered.append(path)
        return path

    def write_body(self, pdf_bytes: bytes) -> Path:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self.body_path.write_bytes(pdf_bytes)
        logger.info(f"[run:{self.run_id[:8]}] PDF saved to: {self.body_path}")
        return self.body_path

    def cleanup(self) -> List[Path]:
        """
        Delete every registered path that exists.

        Returns:
            Paths that could not be deleted (already logged)
        """
        leftovers = []
        for path in self._registered:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"[run:{self.run_id[:8]}] Cleanup error for {path}: {e}")
                leftovers.append(path)
        return leftovers

    async def __aenter__(self) -> "Workspace":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.cleanup()
        return False
