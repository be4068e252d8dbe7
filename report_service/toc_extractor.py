"""
TOC Extractor Module

Runs the pdf.tocgen command line tools against a captured body PDF:
- pdftocgen reads the heading recipe on stdin and prints the outline listing
- pdftocio reads that listing on stdin and writes an outline-annotated copy

Failures are reported as TocGenerationFailed so the pipeline can fall back
to the plain body.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import ReportSettings
from .errors import TocGenerationFailed

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500


class ToolError(Exception):
    """An external command could not be started, timed out, or exited non-zero."""

    def __init__(self, cmd: List[str], message: str, returncode: Optional[int] = None):
        self.cmd = cmd
        self.returncode = returncode
        super().__init__(f"{cmd[0]}: {message}")


async def _kill(process) -> None:
    """Kill a still-running child and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def run_tool(
    cmd: List[str],
    stdin_data: Optional[bytes] = None,
    timeout: float = 300,
) -> bytes:
    """
    Execute an external command with piped standard streams.

    Args:
        cmd: Program and arguments (no shell)
        stdin_data: Bytes written to the program's stdin
        timeout: Seconds before the process is killed

    Returns:
        Captured stdout

    Raises:
        ToolError: On missing binary, timeout or non-zero exit code
    """
    logger.debug(f"Executing: {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ToolError(cmd, f"failed to start ({e})") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(stdin_data), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(process)
        raise ToolError(cmd, f"timed out after {timeout}s")
    except BaseException:
        # Cancelled from outside (request deadline); the child must not outlive the run
        await _kill(process)
        raise

    if process.returncode != 0:
        tail = (stderr or b"").decode("utf-8", errors="replace").strip()[-STDERR_TAIL_CHARS:]
        raise ToolError(cmd, f"exited with code {process.returncode}: {tail}", process.returncode)
    return stdout or b""


@dataclass
class TocArtifacts:
    """Files produced by a successful extraction."""

    listing_path: Path
    annotated_pdf_path: Path
    elapsed_seconds: float


class TocExtractor:
    """Derives an outline and a plain-text TOC listing from a body PDF."""

    def __init__(self, settings: ReportSettings, recipe_path: Optional[Path] = None):
        self.settings = settings
        self.recipe_path = recipe_path or settings.recipe_path

    def _read_recipe(self) -> bytes:
        try:
            recipe = self.recipe_path.read_bytes()
        except OSError as e:
            raise TocGenerationFailed(f"Cannot read recipe {self.recipe_path}: {e}") from e
        if not recipe.strip():
            raise TocGenerationFailed(f"Recipe {self.recipe_path} is empty")
        return recipe

    async def extract(self, body_path: Path, listing_path: Path, output_path: Path) -> TocArtifacts:
        """
        Produce the TOC listing and the outline-annotated PDF.

        Args:
            body_path: Captured body PDF
            listing_path: Where the plain-text listing is written
            output_path: Where the outline-annotated PDF is written

        Raises:
            TocGenerationFailed: On any tool failure or missing output
        """
        started = time.perf_counter()
        recipe = self._read_recipe()
        timeout = self.settings.tool_timeout_seconds
        tocgen_cmd = [self.settings.pdftocgen_bin, str(body_path)]

        try:
            listing = await run_tool(tocgen_cmd, recipe, timeout)
            if not listing.strip():
                raise TocGenerationFailed(f"{self.settings.pdftocgen_bin} produced no TOC entries")
            listing_path.write_bytes(listing)

            outline = await run_tool(tocgen_cmd, recipe, timeout)
            await run_tool(
                [self.settings.pdftocio_bin, str(body_path), "-o", str(output_path)],
                outline,
                timeout,
            )
        except ToolError as e:
            raise TocGenerationFailed(str(e)) from e
        except OSError as e:
            raise TocGenerationFailed(f"Failed to write TOC listing: {e}") from e

        if not output_path.exists():
            raise TocGenerationFailed(f"Outline-annotated PDF not found: {output_path}")

        elapsed = time.perf_counter() - started
        logger.info(f"TOC generation took: {elapsed:.2f} seconds")
        return TocArtifacts(listing_path, output_path, elapsed)
