# Doc-Pipeline/tool_adapter.py
"""Runs external command-line tools and normalizes how they fail.

One ``ToolInvocation`` describes one process call. ``ToolAdapter.invoke`` runs
it and either returns a ``ToolOutcome`` or raises one of the tool errors from
``errors``. ``ToolAdapter.run_chain`` walks an ordered list of invocations
(primary tool first, fallbacks after) and records a ``ToolAttempt`` for each
one, raising ``ToolChainExhausted`` only when every entry failed.

The adapter never deletes anything it (or a tool) wrote; partial output is the
request tracker's problem.
"""
import os
import re
import shutil
import signal
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from errors import (ToolError, ToolUnavailable, ToolTimeout, ToolExecutionFailed,
                    ToolOutputMissing, ToolChainExhausted)

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 4096
DEFAULT_QUALITY = 50


# --- Quality tiers ---

@dataclass(frozen=True)
class QualityTier:
    level: int
    name: str
    pdf_settings: str          # Ghostscript -dPDFSETTINGS preset
    resolution: int | None     # target image dpi, None = keep original
    jpeg_quality: int


# (upper bound exclusive, tier). Higher quality scalar => smaller output.
QUALITY_TIERS = (
    (25, QualityTier(0, "maximum", "/prepress", None, 95)),
    (50, QualityTier(1, "high", "/printer", 300, 85)),
    (75, QualityTier(2, "balanced", "/ebook", 150, 75)),
    (90, QualityTier(3, "small", "/screen", 96, 60)),
    (101, QualityTier(4, "smallest", "/screen", 72, 40)),
)


def clamp_quality(quality):
    return max(1, min(100, int(quality)))


def quality_tier(quality) -> QualityTier:
    """Maps a 1-100 quality scalar (clamped) onto its compression tier."""
    quality = clamp_quality(quality)
    for upper, tier in QUALITY_TIERS:
        if quality < upper:
            return tier
    return QUALITY_TIERS[-1][1]


# --- Invocation model ---

@dataclass(frozen=True)
class ToolInvocation:
    label: str
    executable: str
    args: tuple = ()
    timeout: float = 120
    expected_output: Path | None = None
    ok_returncodes: tuple = (0,)
    secrets: tuple = field(default=(), repr=False)   # masked in log lines
    cwd: Path | None = None
    env: dict | None = field(default=None, compare=False)

    def display(self, executable=None):
        parts = [executable or self.executable, *map(str, self.args)]
        line = " ".join(parts)
        for secret in self.secrets:
            if secret:
                line = line.replace(secret, "****")
        return line


@dataclass(frozen=True)
class ToolOutcome:
    invocation: ToolInvocation
    output: Path | None
    returncode: int
    stdout: str = ""
    stderr_tail: str = ""


@dataclass(frozen=True)
class ToolAttempt:
    """Tagged result of one entry of a fallback chain: exactly one of outcome/error is set."""

    invocation: ToolInvocation
    outcome: ToolOutcome | None = None
    error: ToolError | None = None

    @property
    def ok(self):
        return self.error is None

    @property
    def label(self):
        return self.invocation.label


def _tail(data: bytes, limit=STDERR_TAIL_BYTES) -> str:
    if not data:
        return ""
    return data[-limit:].decode("utf-8", errors="replace").strip()


def _signature(path):
    try:
        stat = Path(path).stat()
    except OSError:
        return None
    return stat.st_size, stat.st_mtime_ns


def _kill(proc):
    """Kills the tool and anything it spawned (it runs in its own session)."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        proc.kill()


class ToolAdapter:
    """Stateless runner for external tools; safe to share between concurrent requests."""

    def __init__(self, search_path=None):
        self.search_path = search_path

    def resolve(self, executable):
        """Returns the absolute command path or raises ToolUnavailable."""
        if os.sep in executable or (os.altsep and os.altsep in executable):
            if os.path.isfile(executable) and os.access(executable, os.X_OK):
                return executable
            raise ToolUnavailable(f"Executable '{executable}' not found.", tool=executable)
        found = shutil.which(executable, path=self.search_path)
        if not found:
            raise ToolUnavailable(f"Required tool '{executable}' is not installed.", tool=executable)
        return found

    def is_available(self, executable):
        try:
            self.resolve(executable)
            return True
        except ToolUnavailable:
            return False

    def invoke(self, invocation: ToolInvocation) -> ToolOutcome:
        command = self.resolve(invocation.executable)
        label = invocation.label
        before = _signature(invocation.expected_output) if invocation.expected_output else None
        logger.info(f"Running {label}: {invocation.display(command)}")

        try:
            proc = subprocess.Popen(
                [command, *map(str, invocation.args)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=invocation.cwd,
                env=invocation.env,
                start_new_session=hasattr(os, "killpg"),
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolUnavailable(f"Could not start '{invocation.executable}': {e}", tool=label) from e

        with proc:
            try:
                stdout, stderr = proc.communicate(timeout=invocation.timeout)
            except subprocess.TimeoutExpired:
                _kill(proc)
                proc.communicate()
                logger.error(f"{label} timed out after {invocation.timeout}s and was killed.")
                raise ToolTimeout(f"{label} timed out after {invocation.timeout} seconds.", tool=label)
            except BaseException:
                # Interrupted while waiting (request aborted): never leave the child behind.
                _kill(proc)
                proc.wait()
                raise

        stderr_tail = _tail(stderr)
        if proc.returncode not in invocation.ok_returncodes:
            logger.warning(f"{label} failed (exit code {proc.returncode}). Stderr: {stderr_tail or '[No stderr]'}")
            raise ToolExecutionFailed(f"{label} failed with exit code {proc.returncode}.",
                                      tool=label, returncode=proc.returncode, stderr_tail=stderr_tail)
        if stderr_tail:
            logger.warning(f"{label} stderr: {stderr_tail}")

        output = invocation.expected_output
        if output is not None:
            after = _signature(output)
            if after is None or after[0] == 0:
                raise ToolOutputMissing(f"{label} finished but did not write {Path(output).name}.", tool=label)
            if before is not None and after == before:
                raise ToolOutputMissing(f"{label} finished but left {Path(output).name} untouched.", tool=label)

        return ToolOutcome(invocation, output, proc.returncode,
                           stdout.decode("utf-8", errors="replace"), stderr_tail)

    def attempt(self, invocation: ToolInvocation) -> ToolAttempt:
        try:
            return ToolAttempt(invocation, outcome=self.invoke(invocation))
        except ToolError as e:
            return ToolAttempt(invocation, error=e)

    def run_chain(self, invocations) -> ToolOutcome:
        """Tries each invocation in order until one succeeds.

        Unavailable tools, non-zero exits and missing output move on to the next
        entry. A timeout ends the chain with the ToolTimeout itself.
        """
        attempts = []
        for invocation in invocations:
            attempt = self.attempt(invocation)
            attempts.append(attempt)
            if isinstance(attempt.error, ToolTimeout):
                # Timeouts are not retried.
                raise attempt.error
            if attempt.ok:
                if len(attempts) > 1:
                    logger.info(f"{invocation.label} succeeded after {len(attempts) - 1} failed attempt(s).")
                return attempt.outcome
            logger.warning(f"{invocation.label} unusable ({attempt.error.kind}): {attempt.error.message}")

        labels = ", ".join(a.label for a in attempts) or "none configured"
        raise ToolChainExhausted(f"All tools failed ({labels}).", attempts)


_NUMBER_RE = re.compile(r"(\d+)(?!.*\d)")


def numbered_files(directory, pattern):
    """Lists files matching ``pattern`` ordered by the last number in their name (page-2 before page-10)."""
    def key(path):
        match = _NUMBER_RE.search(path.stem)
        return (int(match.group(1)) if match else -1, path.name)
    return sorted((p for p in Path(directory).glob(pattern) if p.is_file()), key=key)
