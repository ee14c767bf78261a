import logging
import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Mapping, Optional

from .classifier import classify
from .errors import PolicyError, TransientError, UnknownError
from .models import Source

logger = logging.getLogger(__name__)

# Messages that point at a busy or rate-limited backend.
TRANSIENT_MARKERS = ("overloaded", "503", "429", "too many requests", "rate limit", "timed out", "unavailable")


class CommandGenerator:
    """
    Generation backend that shells out to a user-supplied command.

    The template may reference {source}, {output} and {aspect_ratio}; each is
    shell-quoted before substitution. The instructions travel in the
    CHROMACTL_PROMPT environment variable. Exit code 0 plus an existing
    output file means success; anything else raises a GenerationError whose
    message is the command's stderr.

    Transient failures (timeouts, busy or rate-limited backends) are retried
    in place up to ``attempts`` calls in total, sleeping
    ``backoff_base ** n`` seconds before retry n.
    """

    def __init__(self, command: str, output_dir: str = "output", timeout: float = 120,
                 attempts: int = 3, backoff_base: float = 2):
        if not command or not command.strip():
            raise ValueError("Generator command cannot be empty.")
        self.command = command
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base

    def build_args(self, source: Source, output: Path, aspect_ratio: Optional[str]):
        cmd = self.command.format(
            source=shlex.quote(source.path),
            output=shlex.quote(str(output)),
            aspect_ratio=shlex.quote(aspect_ratio or "1:1"),
        )
        return shlex.split(cmd, posix=(os.name != "nt"))

    def generate(self, source: Source, instructions: str, shape_hints: Mapping) -> str:
        attempt = 1
        while True:
            try:
                return self._run_once(source, instructions, shape_hints)
            except TransientError as e:
                if attempt >= self.attempts:
                    raise
                delay = self.backoff_base ** attempt
                logger.info("Backend busy (%s); retrying in %ss (attempt %d/%d)",
                            e, delay, attempt + 1, self.attempts)
                time.sleep(delay)
                attempt += 1

    def _run_once(self, source: Source, instructions: str, shape_hints: Mapping) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_dir / shape_hints.get("filename", f"{Path(source.name).stem}.png")
        args = self.build_args(source, output, shape_hints.get("aspect_ratio"))

        env = dict(os.environ)
        env["CHROMACTL_PROMPT"] = instructions
        env["CHROMACTL_SOURCE_TYPE"] = source.mime_type

        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout, env=env)
        except subprocess.TimeoutExpired:
            raise TransientError(f"Operation timed out after {self.timeout}s: {source.name}")
        except FileNotFoundError:
            raise UnknownError(f"Command not found: {args[0] if args else self.command}")

        if result.stdout:
            logger.debug(result.stdout.strip())

        if result.returncode != 0:
            message = (result.stderr or "").strip()[-500:] or f"exit_code={result.returncode}"
            if classify(message).is_policy_rejection:
                raise PolicyError(message)
            if any(m in message.lower() for m in TRANSIENT_MARKERS):
                raise TransientError(message)
            raise UnknownError(message)

        if not output.exists():
            raise UnknownError(f"Generator produced no image at {output}")
        return str(output)
