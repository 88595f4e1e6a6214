from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

__all__ = ["CommandResult", "CommandError", "Runner", "ShellHost"]


@dataclass
class CommandResult:
    argv: List[str]
    stdout: str = ""
    stderr: str = ""
    rc: int = 0

    @property
    def ok(self) -> bool:
        return self.rc == 0

    @property
    def text(self) -> str:
        # Keep both so probes see output even if it went to stderr
        return (self.stdout or "") + (self.stderr or "")

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    def lines(self) -> List[str]:
        return [ln for ln in self.stdout.splitlines() if ln.strip()]

    def check(self) -> "CommandResult":
        if not self.ok:
            raise CommandError(self)
        return self


class CommandError(RuntimeError):
    def __init__(self, result: CommandResult):
        self.result = result
        err = (result.stderr or result.stdout or "").strip()
        super().__init__(f"Command failed: {result.command}: rc={result.rc} err={err!r}")


class Runner(Protocol):
    def run(self, argv: Sequence[str], *, input: Optional[str] = None,
            check: bool = False, timeout: Optional[float] = None) -> CommandResult: ...
    def close(self) -> None: ...


class ShellHost:
    """
    A machine we provision. Subclasses only have to implement run(); the file
    helpers below are expressed with coreutils so they work the same over SSH.
    """
    name: str = "host"

    def run(self, argv: Sequence[str], *, input: Optional[str] = None,
            check: bool = False, timeout: Optional[float] = None) -> CommandResult:
        raise NotImplementedError

    def sh(self, script: str, **kwargs) -> CommandResult:
        return self.run(["sh", "-c", script], **kwargs)

    def which(self, cmd: str) -> bool:
        return self.sh(f"command -v {shlex.quote(cmd)}").ok

    def is_privileged(self) -> bool:
        res = self.run(["id", "-u"])
        return res.ok and res.stdout.strip() == "0"

    # ---- files ----

    def read_text(self, path: str) -> Optional[str]:
        res = self.run(["cat", path])
        return res.stdout if res.ok else None

    def write_text(self, path: str, content: str, mode: Optional[int] = None) -> None:
        self.run(["tee", path], input=content, check=True)
        if mode is not None:
            self.chmod(path, mode)

    def append_text(self, path: str, content: str) -> None:
        self.run(["tee", "-a", path], input=content, check=True)

    def exists(self, path: str) -> bool:
        return self.run(["test", "-e", path]).ok

    def is_dir(self, path: str) -> bool:
        return self.run(["test", "-d", path]).ok

    def is_file(self, path: str) -> bool:
        return self.run(["test", "-f", path]).ok

    def mkdir(self, path: str) -> None:
        self.run(["mkdir", "-p", path], check=True)

    def remove(self, path: str, *, recursive: bool = False) -> None:
        self.run(["rm", "-rf" if recursive else "-f", path])

    def listdir(self, path: str) -> List[str]:
        res = self.run(["ls", "-1A", path])
        return sorted(res.lines()) if res.ok else []

    def symlink(self, target: str, link: str) -> None:
        self.run(["ln", "-sfn", target, link], check=True)

    def move(self, src: str, dst: str) -> CommandResult:
        return self.run(["mv", src, dst])

    def copy(self, src: str, dst: str) -> CommandResult:
        return self.run(["cp", "-a", src, dst])

    def chmod(self, path: str, mode: int, *, recursive: bool = False) -> CommandResult:
        argv = ["chmod"] + (["-R"] if recursive else []) + [format(mode, "o"), path]
        return self.run(argv)

    def chown(self, path: str, owner: str, *, recursive: bool = False) -> CommandResult:
        argv = ["chown"] + (["-R"] if recursive else []) + [f"{owner}:{owner}", path]
        return self.run(argv)

    def file_size(self, path: str) -> int:
        res = self.run(["stat", "-c", "%s", path])
        try:
            return int(res.stdout.strip()) if res.ok else 0
        except ValueError:
            return 0

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
