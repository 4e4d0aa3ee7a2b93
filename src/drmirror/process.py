from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeAlias

from .config import DEFAULT_COMMAND_TIMEOUT, RAW_OUTPUT_PREVIEW_CHARS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessSuccess:
    body: object


@dataclass(frozen=True)
class ProcessError:
    message: str


@dataclass(frozen=True)
class ParseError:
    raw_output: str
    message: str = "failed to parse command output"


ProcessResult: TypeAlias = ProcessSuccess | ProcessError | ParseError


def _run(argv: Sequence[str], timeout: float) -> ProcessResult:
    try:
        completed = subprocess.run(
            list(argv),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return ProcessError(f"{argv[0]!r} timed out after {timeout:.0f}s")
    except OSError as exc:
        return ProcessError(f"failed to start {argv[0]!r}: {exc}")

    stdout = completed.stdout or ""
    stderr = (completed.stderr or "").strip()
    if completed.returncode != 0:
        if stderr:
            logger.error("%s stderr: %s", argv[0], stderr)
        details = stderr or stdout.strip()
        return ProcessError(f"{argv[0]!r} exited with code {completed.returncode}: {details}")

    try:
        return ProcessSuccess(json.loads(stdout))
    except json.JSONDecodeError as exc:
        logger.error("unparseable output from %s: %s", argv[0], exc)
        return ParseError(stdout[:RAW_OUTPUT_PREVIEW_CHARS], message=str(exc))


async def run_json_command(
    argv: Sequence[str], timeout: float = DEFAULT_COMMAND_TIMEOUT
) -> ProcessResult:
    """Run an external command and decode its stdout as one JSON document."""
    if not argv:
        return ProcessError("empty command")
    logger.debug("running %s", argv[0])
    return await asyncio.to_thread(_run, tuple(argv), timeout)
