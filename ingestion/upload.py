from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from misc.errors import UploadError


class Uploader(Protocol):
    async def upload(self, path: str) -> str: ...


class ScriptUploader:
    """
    Hands a local file to an external executable and returns the address it prints.

    The script is called with the file path as its only argument. Exit status 0 with a
    non-empty stdout is success; anything else raises UploadError carrying stderr.
    """

    def __init__(self, script_path: str) -> None:
        self.script_path = str(script_path)

    async def upload(self, path: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.script_path,
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise UploadError(f"could not launch {self.script_path}: {e}", stderr=str(e)) from e

        out, err = await proc.communicate()
        stdout = (out or b"").decode("utf-8", errors="replace").strip()
        stderr = (err or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise UploadError(
                f"upload of {Path(path).name} exited with {proc.returncode}",
                stderr=stderr,
            )
        if not stdout:
            raise UploadError(f"upload of {Path(path).name} printed no address", stderr=stderr)
        # scripts may log progress first; the address is the last line
        return stdout.splitlines()[-1].strip()
