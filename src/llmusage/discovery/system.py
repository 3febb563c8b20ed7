"""Local credential sources: subprocesses, the macOS keychain, editor state DBs."""

from __future__ import annotations

import asyncio
import os
import sqlite3
import sys
from pathlib import Path
from typing import Optional

from llmusage._logging import get_logger

logger = get_logger("LLMUsage.Discovery.System")


async def run_command(*args: str) -> Optional[str]:
    """Run a command and return its stdout, or None if it failed to run.

    The child is killed if the awaiting task is cancelled.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        logger.debug(f"Could not run {args[0]}: {exc}")
        return None

    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        logger.debug(f"{args[0]} exited with status {proc.returncode}")
        return None
    return stdout.decode("utf-8", errors="replace")


async def read_generic_password(service: str) -> Optional[str]:
    """Read a generic password item from the macOS login keychain."""
    if sys.platform != "darwin":
        return None
    output = await run_command("security", "find-generic-password", "-s", service, "-w")
    if output is None:
        return None
    value = output.rstrip("\n")
    return value or None


def editor_state_db(app_name: str) -> Path:
    """Location of a VS Code-family editor's global ``state.vscdb``."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / app_name / "User" / "globalStorage" / "state.vscdb"


def read_state_value(db_path: Path, key: str) -> Optional[str]:
    """Read one ``ItemTable`` value from a state DB, opened read-only."""
    try:
        conn = sqlite3.connect(f"{Path(db_path).resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as exc:
        logger.debug(f"Could not open {db_path}: {exc}")
        return None
    try:
        row = conn.execute(
            "SELECT value FROM ItemTable WHERE key = ? LIMIT 1", (key,)
        ).fetchone()
    except sqlite3.Error as exc:
        logger.debug(f"Could not query {db_path}: {exc}")
        return None
    finally:
        conn.close()

    if row is None or row[0] is None:
        return None
    value = row[0]
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value)
