from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..logging import get_logger
from .base import CommandResult, ShellHost

__all__ = ["LocalHost"]

DEFAULT_TIMEOUT = 600


class LocalHost(ShellHost):
    """The machine radmgr runs on. Commands via subprocess, files via pathlib."""
    name = "localhost"

    def run(self, argv: Sequence[str], *, input: Optional[str] = None,
            check: bool = False, timeout: Optional[float] = None) -> CommandResult:
        log = get_logger()
        argv = [str(a) for a in argv]
        log.debug(f"run: {argv}")
        try:
            proc = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout or DEFAULT_TIMEOUT,
            )
            res = CommandResult(argv, proc.stdout or "", proc.stderr or "", proc.returncode)
        except FileNotFoundError as e:
            res = CommandResult(argv, "", str(e), 127)
        except subprocess.TimeoutExpired:
            res = CommandResult(argv, "", f"timed out after {timeout or DEFAULT_TIMEOUT}s", 124)
        if check:
            res.check()
        return res

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    # pathlib fast paths

    def read_text(self, path: str) -> Optional[str]:
        p = Path(path)
        if not p.is_file():
            return None
        return p.read_text(encoding="utf-8", errors="replace")

    def write_text(self, path: str, content: str, mode: Optional[int] = None) -> None:
        p = Path(path)
        p.write_text(content, encoding="utf-8")
        if mode is not None:
            os.chmod(p, mode)

    def append_text(self, path: str, content: str) -> None:
        with Path(path).open("a", encoding="utf-8") as f:
            f.write(content)

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def is_dir(self, path: str) -> bool:
        return Path(path).is_dir()

    def is_file(self, path: str) -> bool:
        return Path(path).is_file()

    def mkdir(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def remove(self, path: str, *, recursive: bool = False) -> None:
        p = Path(path)
        if p.is_dir() and not p.is_symlink():
            if recursive:
                shutil.rmtree(p)
            return
        if p.exists() or p.is_symlink():
            p.unlink()

    def listdir(self, path: str) -> List[str]:
        p = Path(path)
        if not p.is_dir():
            return []
        return sorted(x.name for x in p.iterdir())

    def symlink(self, target: str, link: str) -> None:
        p = Path(link)
        if p.is_symlink() or p.exists():
            p.unlink()
        p.symlink_to(target)

    def file_size(self, path: str) -> int:
        p = Path(path)
        return p.stat().st_size if p.exists() else 0
