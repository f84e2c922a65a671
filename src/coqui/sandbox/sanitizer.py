"""Best-effort static scan of generated Python code before it is executed.

This is defence in depth. The interactive approval prompt is the primary
gate; the scan catches obvious dangerous constructs a model may produce,
whether by accident or through prompt injection. It is purely textual and
can be defeated by obfuscation.
"""

from __future__ import annotations

import re

# Function calls that are never allowed in generated scripts.
DENIED_FUNCTIONS = [
    "eval",
    "exec",
    "__import__",
    "system",
    "passthru",
    "shell_exec",
    "proc_open",
    "popen",
    "execv",
    "execve",
    "execvp",
    "execvpe",
    "execl",
    "execle",
    "execlp",
    "execlpe",
    "spawnv",
    "spawnve",
    "spawnl",
    "spawnle",
    "spawnlp",
    "spawnlpe",
    "spawnvp",
    "spawnvpe",
    "posix_spawn",
    "posix_spawnp",
    "spawn",
    "create_subprocess_exec",
    "create_subprocess_shell",
    "fork",
    "forkpty",
    "putenv",
    "setrecursionlimit",
    "settrace",
    "setprofile",
]

_PATH = r"""[rbuf]*['"][/~]"""

# Structural patterns that indicate dangerous constructs.
DENIED_PATTERNS = [
    r"`[^`]+`",  # backtick execution
    r"\b(sudo|chmod\s+777|chown)\b",  # privilege escalation
    r"\bcurl\s.*\|\s*(bash|sh|zsh)\b",  # pipe to shell
    r"\bwget\s.*-O-?\s*\|\s*(bash|sh|zsh)\b",  # wget pipe to shell
    r"\b(import\s+subprocess|from\s+subprocess\s+import)\b",  # process spawning
    r"""\bopen\s*\(\s*""" + _PATH + r"""[^'"]*['"]\s*,\s*(mode\s*=\s*)?[rbt]*['"][^'"]*[wax+]""",
    r"""\bPath\s*\(\s*""" + _PATH + r"""[^'"]*['"]\s*\)\s*\.\s*(write_text|write_bytes|unlink|rmdir|touch|mkdir)\s*\(""",
    r"\b(remove|unlink|rmdir|removedirs|rmtree)\s*\(\s*" + _PATH,  # delete absolute paths
    r"\b(run_path|spec_from_file_location)\s*\(\s*" + _PATH,  # load code from absolute paths
    r"\bsys\s*\.\s*path\s*\.\s*(insert|append)\s*\([^)]*" + _PATH,
]

_FUNCTION_RES = [
    (name, re.compile(r"\b" + re.escape(name) + r"\s*\(", re.IGNORECASE)) for name in DENIED_FUNCTIONS
]
_PATTERN_RES = [(pattern, re.compile(pattern, re.IGNORECASE)) for pattern in DENIED_PATTERNS]


class ScriptSanitizer:
    def validate(self, code: str) -> list[str]:
        """Return the issues found in `code`. An empty list means it passed."""
        issues: list[str] = []
        for name, regex in _FUNCTION_RES:
            if regex.search(code):
                issues.append(f"Denied function call: {name}()")
        for pattern, regex in _PATTERN_RES:
            if regex.search(code):
                issues.append(f"Denied pattern detected: {pattern}")
        return issues

    def is_safe(self, code: str) -> bool:
        return not self.validate(code)
