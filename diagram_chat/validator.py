"""Diagram validation against an out-of-process renderer.

The renderer reports results through a side channel keyed by a correlation
token (the candidate's nonce). Every wait on that channel is bounded by a
timeout and doubles as a cancellation point.
"""

import asyncio
import contextlib
import itertools
import logging
import re
import tempfile
from pathlib import Path
from typing import Callable, Optional, Protocol

from .config import DEFAULT_LANGUAGE, DEFAULT_VALIDATION_TIMEOUT
from .diagram import contains_fence, detect_diagram_type, normalize, strip_fences_once
from .errors import DiagramValidationError, ExtractionError, TurnCancelled, ValidationTimeout
from .models import (
    DiagramCandidate,
    MalformedExtraction,
    ValidationFailure,
    ValidationOutcome,
    ValidationSuccess,
)

logger = logging.getLogger(__name__)

ReportOutcome = Callable[[ValidationOutcome], bool]

_STACK_LINE_RE = re.compile(r"^\s+at\s")
MAX_ERROR_CHARS = 2000


class CorrelationChannel:
    """One future per correlation token; results are posted from the renderer side."""

    def __init__(self):
        self._waiters: dict[str, asyncio.Future] = {}

    @property
    def pending(self) -> list[str]:
        return [token for token, fut in self._waiters.items() if not fut.done()]

    def expect(self, token: str) -> asyncio.Future:
        if token in self._waiters:
            raise ValueError(f"Token {token} is already awaited")
        future = asyncio.get_running_loop().create_future()
        self._waiters[token] = future
        return future

    def post(self, outcome: ValidationOutcome) -> bool:
        """Deliver an outcome. Returns False for unknown or already answered tokens."""
        future = self._waiters.get(outcome.nonce)
        if future is None or future.done():
            logger.warning("Dropping validation result for unexpected token %s", outcome.nonce)
            return False
        future.set_result(outcome)
        return True

    async def wait(
        self,
        token: str,
        timeout: float,
        cancel: Optional[asyncio.Event] = None,
    ) -> ValidationOutcome:
        """Await the outcome for ``token``.

        Raises ValidationTimeout after ``timeout`` seconds and TurnCancelled
        if ``cancel`` is set first.
        """
        future = self._waiters[token]
        cancel_task = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        try:
            waiting = {future} if cancel_task is None else {future, cancel_task}
            done, _ = await asyncio.wait(waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            if future in done:
                return future.result()
            if cancel_task is not None and cancel_task in done:
                raise TurnCancelled("Turn cancelled while waiting for validation")
            raise ValidationTimeout(token, timeout)
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            self._waiters.pop(token, None)


def raise_for_outcome(outcome: ValidationOutcome):
    """Raise ExtractionError or DiagramValidationError for a non-success outcome."""
    if isinstance(outcome, MalformedExtraction):
        raise ExtractionError(outcome.error)
    if isinstance(outcome, ValidationFailure):
        raise DiagramValidationError(outcome.error, outcome.hint)


class RenderBackend(Protocol):
    """Renders diagram source and reports exactly one outcome for the nonce."""

    async def render(self, source: str, nonce: str, report: ReportOutcome) -> None:
        ...


def extract_cli_error(log: str) -> str:
    """Keep the parser message, drop JavaScript stack frames."""
    lines = [line for line in log.strip().splitlines() if not _STACK_LINE_RE.match(line)]
    message = "\n".join(lines).strip()
    return message[:MAX_ERROR_CHARS] or "Renderer failed without an error message"


class MermaidCliBackend:
    """Validates by rendering with the Mermaid CLI (mmdc) in a subprocess."""

    def __init__(self, mmdc_path: str = "mmdc", timeout: float = DEFAULT_VALIDATION_TIMEOUT):
        self.mmdc_path = mmdc_path
        self.timeout = timeout

    async def render(self, source: str, nonce: str, report: ReportOutcome) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path = Path(tmpdir) / "diagram.mmd"
            output_path = Path(tmpdir) / "diagram.svg"
            input_path.write_text(source, encoding="utf-8")

            try:
                proc = await asyncio.create_subprocess_exec(
                    self.mmdc_path, "-i", str(input_path), "-o", str(output_path),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError:
                # mmdc not available: skip the check rather than fail every attempt
                logger.warning("%s not found; skipping Mermaid render check", self.mmdc_path)
                report(ValidationSuccess(nonce=nonce, diagram_type=detect_diagram_type(source)))
                return

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                report(ValidationFailure(nonce=nonce, error="Mermaid render timed out"))
                return
            except asyncio.CancelledError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                raise

            if proc.returncode == 0 and output_path.exists():
                report(ValidationSuccess(nonce=nonce, diagram_type=detect_diagram_type(source)))
                return

            log = stderr.decode("utf-8", errors="replace") or stdout.decode("utf-8", errors="replace")
            error = extract_cli_error(log)
            report(ValidationFailure(nonce=nonce, error=error, hint=error.splitlines()[0]))


class DiagramValidator:
    """Front of the renderer: mints candidates and awaits their outcomes."""

    def __init__(
        self,
        backend: RenderBackend,
        timeout: float = DEFAULT_VALIDATION_TIMEOUT,
        language: str = DEFAULT_LANGUAGE,
    ):
        self.backend = backend
        self.timeout = timeout
        self.language = language
        self.channel = CorrelationChannel()
        self._nonces = itertools.count(1)

    def candidate(self, raw: str, language: Optional[str] = None) -> DiagramCandidate:
        language = language or self.language
        return DiagramCandidate(
            raw=raw,
            body=strip_fences_once(raw, language),
            source=normalize(raw, language),
            nonce=str(next(self._nonces)),
            language=language,
        )

    def _on_render_done(self, nonce: str, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Render backend crashed for %s: %s", nonce, error)
            if nonce in self.channel.pending:
                self.channel.post(ValidationFailure(nonce=nonce, error=f"Renderer error: {error}"))

    async def validate(
        self,
        candidate: DiagramCandidate,
        cancel: Optional[asyncio.Event] = None,
    ) -> ValidationOutcome:
        if contains_fence(candidate.body):
            return MalformedExtraction(
                nonce=candidate.nonce,
                error="diagram contains extra ``` characters",
            )
        if not candidate.source:
            return MalformedExtraction(nonce=candidate.nonce, error="diagram is empty")

        self.channel.expect(candidate.nonce)
        task = asyncio.create_task(self.backend.render(candidate.source, candidate.nonce, self.channel.post))
        task.add_done_callback(lambda t: self._on_render_done(candidate.nonce, t))
        try:
            outcome = await self.channel.wait(candidate.nonce, self.timeout, cancel)
        except ValidationTimeout as e:
            logger.warning("%s", e)
            return ValidationFailure(nonce=candidate.nonce, error=str(e), hint="The renderer did not respond")
        finally:
            if not task.done():
                task.cancel()

        logger.info("Validation %s for nonce %s", outcome.status, outcome.nonce)
        return outcome
