from __future__ import annotations

import os
import stat
import tempfile
import unittest
from pathlib import Path

from ingestion.upload import ScriptUploader
from misc.errors import UploadError


@unittest.skipIf(os.name != "posix", "upload scripts are shell scripts")
class ScriptUploaderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.file = self.dir / "history.csv"
        self.file.write_text("a,b\n", encoding="utf-8")

    async def asyncTearDown(self):
        self.tmp.cleanup()

    def _script(self, body: str) -> str:
        path = self.dir / "upload.sh"
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return str(path)

    async def test_last_stdout_line_is_the_address(self):
        uploader = ScriptUploader(self._script('echo "uploading $1"\necho "https://files.example/$(basename "$1")"\n'))
        address = await uploader.upload(str(self.file))
        self.assertEqual(address, "https://files.example/history.csv")

    async def test_non_zero_exit_carries_stderr(self):
        uploader = ScriptUploader(self._script('echo "AccessDenied" >&2\nexit 3\n'))
        with self.assertRaises(UploadError) as ctx:
            await uploader.upload(str(self.file))
        self.assertEqual(ctx.exception.stderr, "AccessDenied")
        self.assertIn("3", str(ctx.exception))

    async def test_empty_stdout_is_a_failure(self):
        uploader = ScriptUploader(self._script("exit 0\n"))
        with self.assertRaises(UploadError):
            await uploader.upload(str(self.file))

    async def test_missing_script(self):
        uploader = ScriptUploader(str(self.dir / "nope.sh"))
        with self.assertRaises(UploadError):
            await uploader.upload(str(self.file))


if __name__ == "__main__":
    unittest.main()
