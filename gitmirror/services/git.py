"""
Async wrapper around the git command line.

Every call runs ``git`` as a subprocess on the event loop with an upper time
bound. Failures are raised as GitCommandError with credentials stripped from
both the command line and git's own output; the pipeline stages wrap these
into their stage-specific exceptions.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from gitmirror.domain.registry_utils import is_commit_id

logger = logging.getLogger(__name__)

_SCHEME_CRED_RE = re.compile(r"([a-zA-Z][a-zA-Z0-9+.-]*://)([^\s/@]+(:[^\s/@]*)?@)")


def redact_url_credentials(url: str) -> str:
    """Return a URL with any embedded user:password removed."""
    raw = str(url)
    if "://" not in raw:
        return raw
    parts = urlsplit(raw)
    if parts.username is None and parts.password is None:
        return raw
    host = parts.hostname or ""
    port = f":{parts.port}" if parts.port else ""
    return urlunsplit((parts.scheme, f"{host}{port}", parts.path, parts.query, parts.fragment))


def redact_text_credentials(text: str) -> str:
    return _SCHEME_CRED_RE.sub(r"\1<redacted>@", str(text))


class GitCommandError(Exception):
    """A git invocation exited non-zero, timed out or could not be started."""

    def __init__(self, args: List[str], returncode: Optional[int], output: str, *, summary: Optional[str] = None):
        self.args_list = [redact_url_credentials(a) for a in args]
        self.returncode = returncode
        self.output = redact_text_credentials(output).strip()
        command = "git " + " ".join(self.args_list)
        if summary is None:
            summary = "Git command timed out" if returncode is None else f"Git command failed ({returncode})"
        message = f"{summary}: {command}"
        if self.output:
            message += f"\n{self.output}"
        super().__init__(message)


class GitClient:
    """
    Runs the handful of git commands the mirror needs.

    Args:
        timeout: seconds before a single git process is killed
    """

    def __init__(self, timeout: float = 600.0, executable: str = "git"):
        self.timeout = timeout
        self.executable = executable

    async def clone(self, remote: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        await self._run(["clone", "-q", "--", remote, str(destination)], cwd=destination.parent)

    async def remote_head(self, working_copy: Path) -> str:
        """Commit the remote's default branch points at right now (network call)."""
        stdout = await self._run(["ls-remote", "origin", "HEAD"], cwd=working_copy)
        for line in stdout.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == "HEAD":
                return parts[0]
        raise GitCommandError(["ls-remote", "origin", "HEAD"], 0, "remote did not advertise HEAD")

    async def tracked_head(self, working_copy: Path) -> Optional[str]:
        """Commit of the local remote-tracking default branch, if known."""
        try:
            stdout = await self._run(
                ["rev-parse", "--verify", "-q", "refs/remotes/origin/HEAD^{commit}"],
                cwd=working_copy,
            )
        except GitCommandError:
            return None
        return stdout.strip() or None

    async def fetch_all(self, working_copy: Path) -> None:
        await self._run(["fetch", "--all", "--prune", "-q"], cwd=working_copy)

    async def checkout(self, working_copy: Path, ref: str, *, detach: bool = False) -> None:
        args = ["checkout", "-q"]
        if detach:
            args.append("--detach")
        args.append(ref)
        await self._run(args, cwd=working_copy)

    async def head_commit(self, working_copy: Path) -> str:
        stdout = await self._run(["rev-parse", "--verify", "HEAD"], cwd=working_copy)
        return stdout.splitlines()[0].strip() if stdout.strip() else ""

    async def archive(self, working_copy: Path, output: Path, prefix: str, treeish: str = "HEAD") -> None:
        """Write an uncompressed tar of ``treeish`` with every entry under ``prefix``."""
        await self._run(
            ["archive", "--format=tar", f"--prefix={prefix}", f"--output={output}", treeish],
            cwd=working_copy,
        )

    async def _run(self, args: List[str], cwd: Path) -> str:
        # Never block on a credential prompt; a missing credential is a sync failure.
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"

        logger.debug("Running git %s in %s", " ".join(redact_url_credentials(a) for a in args), cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise GitCommandError(args, None, str(e), summary="Git command could not be started") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise GitCommandError(args, None, f"no result after {self.timeout:.0f}s")
        except BaseException:
            # Cancelled: the caller's lock is about to be released, so the
            # process must be gone before that happens.
            await self._kill(process)
            raise

        if process.returncode != 0:
            output = stderr.decode(errors="replace") or stdout.decode(errors="replace")
            raise GitCommandError(args, process.returncode, output)
        return stdout.decode(errors="replace")

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await asyncio.shield(process.wait())


__all__ = ["GitClient", "GitCommandError", "is_commit_id", "redact_url_credentials"]
