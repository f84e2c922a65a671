"""Runs generated Python code in a subprocess.

The code is written to a throwaway file in the workspace scratch directory,
wrapped in a bootstrap preamble (project root on sys.path, workspace .env
loaded into os.environ), run with the agent's own interpreter and removed
again on every exit path. Both output pipes are read as the script runs and
only the first 32 KiB of each is kept.

Security layers:
1. ScriptSanitizer, a static check for denied calls and patterns
2. the approval policy, so the user sees the code before it runs
3. a wall-clock timeout after which the process group is SIGKILLed
"""

from __future__ import annotations

import logging
import os
import secrets
import selectors
import signal
import subprocess
import sys
import textwrap
import time
from pathlib import Path

from coqui.models.agent_schemas import ToolResult
from coqui.sandbox.sanitizer import ScriptSanitizer
from coqui.tools import Tool

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 32768
DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 600
KILL_GRACE_SECONDS = 2
EXIT_DRAIN_SECONDS = 0.5
POLL_INTERVAL = 0.1
READ_CHUNK_BYTES = 65536

PREAMBLE = textwrap.dedent(
    """\
    def _coqui_bootstrap(project_root, env_file):
        import os
        import sys

        sys.path.insert(0, project_root)
        if not os.path.isfile(env_file):
            return
        with open(env_file, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                key, sep, value = line.partition("=")
                if not sep:
                    continue
                key = key.strip()
                value = value.strip()
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                    value = value[1:-1]
                if key:
                    os.environ[key] = value


    _coqui_bootstrap({project_root!r}, {env_file!r})
    del _coqui_bootstrap

    # --- User code begins ---

    """
)


class CodeExecutor:
    def __init__(
        self,
        project_root: Path,
        workspace: Path,
        default_timeout: int = DEFAULT_TIMEOUT,
        interpreter: str | None = None,
        sanitizer: ScriptSanitizer | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.workspace = Path(workspace)
        self.scratch_dir = self.workspace / "tmp"
        self.env_path = self.workspace / ".env"
        self.default_timeout = default_timeout
        self.interpreter = interpreter or sys.executable
        self.sanitizer = sanitizer or ScriptSanitizer()

    def build_script(self, code: str) -> str:
        preamble = PREAMBLE.format(
            project_root=str(self.project_root),
            env_file=str(self.env_path),
        )
        return preamble + code + "\n"

    def execute(self, code: str, timeout: int | None = None) -> ToolResult:
        if not code or not code.strip():
            return ToolResult.error("Code is required.")

        issues = self.sanitizer.validate(code)
        if issues:
            issue_list = "\n- ".join(issues)
            return ToolResult.error(
                f"Code failed safety validation:\n- {issue_list}\n\n"
                "Rewrite the code without using denied functions or patterns."
            )

        timeout = self._clamp_timeout(timeout)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        script = self.scratch_dir / f"exec_{secrets.token_hex(8)}.py"
        try:
            script.write_text(self.build_script(code), encoding="utf-8")
            return self._run_script(script, timeout)
        finally:
            script.unlink(missing_ok=True)

    def _clamp_timeout(self, timeout: int | None) -> int:
        if timeout is None or timeout <= 0:
            return self.default_timeout
        return min(timeout, MAX_TIMEOUT)

    def _run_script(self, script: Path, timeout: int) -> ToolResult:
        try:
            proc = subprocess.Popen(
                [self.interpreter, "-X", "dev", "-B", str(script)],
                cwd=self.project_root,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            return ToolResult.error(f"Failed to start Python process: {e}")

        logger.debug("Started script %s (pid %d, timeout %ds)", script.name, proc.pid, timeout)
        # The script gets no input.
        proc.stdin.close()

        deadline = time.monotonic() + timeout
        stdout, stderr = OutputBuffer(), OutputBuffer()
        finished = self._drain(proc, {proc.stdout: stdout, proc.stderr: stderr}, deadline)
        if finished:
            try:
                proc.wait(timeout=max(deadline - time.monotonic(), 0))
            except subprocess.TimeoutExpired:
                finished = False
        if not finished:
            self._kill(proc)
            logger.warning("Script %s timed out after %ds", script.name, timeout)
            return ToolResult.error(f"Script timed out after {timeout}s.")

        for pipe in (proc.stdout, proc.stderr):
            pipe.close()
        return self._compose(stdout, stderr, proc.returncode)

    @staticmethod
    def _drain(proc: subprocess.Popen, buffers: dict, deadline: float) -> bool:
        """Read both pipes into their buffers until EOF or shortly after the
        script exits. False means the deadline passed first."""
        exited_at = None
        with selectors.DefaultSelector() as selector:
            for pipe in buffers:
                selector.register(pipe, selectors.EVENT_READ)
            while selector.get_map():
                now = time.monotonic()
                if now >= deadline:
                    return False
                if exited_at is None and proc.poll() is not None:
                    exited_at = now
                # Something the script started may still hold the pipes open.
                if exited_at is not None and now - exited_at >= EXIT_DRAIN_SECONDS:
                    logger.debug("Pipes of pid %d still open after exit, not waiting for EOF", proc.pid)
                    break
                for key, _ in selector.select(min(deadline - now, POLL_INTERVAL)):
                    chunk = os.read(key.fd, READ_CHUNK_BYTES)
                    if chunk:
                        buffers[key.fileobj].feed(chunk)
                    else:
                        selector.unregister(key.fileobj)
        return True

    def _kill(self, proc: subprocess.Popen) -> None:
        """SIGKILL the script and anything it started, then release the pipes."""
        if os.name == "posix":
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        else:
            proc.kill()
        for pipe in (proc.stdin, proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()
        proc.wait(timeout=KILL_GRACE_SECONDS)

    @staticmethod
    def _compose(stdout: OutputBuffer, stderr: OutputBuffer, exit_code: int) -> ToolResult:
        out = stdout.text("output")
        err = stderr.text("stderr")

        body = ""
        if out:
            body += f"**stdout:**\n```\n{out}\n```\n\n"
        if err:
            body += f"**stderr:**\n```\n{err}\n```\n\n"
        body += f"Exit code: {exit_code}"

        if exit_code == 0:
            return ToolResult.success(body)
        return ToolResult.error(body)


class OutputBuffer:
    """Keeps the first `limit` bytes of a stream and drops the rest."""

    def __init__(self, limit: int = MAX_OUTPUT_BYTES) -> None:
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self.limit - len(self.data)
        if room > 0:
            self.data += chunk[:room]
        if len(chunk) > room:
            self.truncated = True

    def text(self, label: str) -> str:
        text = self.data.decode("utf-8", errors="replace")
        if self.truncated:
            return f"{text}\n--- {label} truncated ---"
        return text


def create_python_execute_tool(executor: CodeExecutor) -> Tool:
    def run(args: dict) -> ToolResult:
        timeout = args.get("timeout")
        try:
            timeout = int(timeout) if timeout is not None else None
        except (TypeError, ValueError):
            return ToolResult.error(f"Invalid timeout: {timeout!r}")
        return executor.execute(args.get("code") or "", timeout)

    return Tool(
        name="python_execute",
        description=(
            "Execute Python code in a subprocess to interact with installed packages.\n"
            "The project root is importable and workspace credentials are loaded into "
            "os.environ before your code runs. Output is truncated to ~32KB.\n"
            "IMPORTANT: read credentials with os.environ['KEY_NAME'], never hardcode secrets. "
            "The code is validated before it runs: eval(), exec(), os.system(), subprocess "
            "and writes outside the project are not allowed."
        ),
        parameters={
            "type": "object",
            "properties": {
                "code": {"type": "string", "description": "The Python code to execute."},
                "description": {
                    "type": "string",
                    "description": "Brief description of what this code does (shown in the approval prompt).",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default: {executor.default_timeout}).",
                },
            },
            "required": ["code"],
        },
        execute=run,
    )
