"""Conversation loop: one user turn from request to accepted or abandoned diagram.

Each round builds the prompt, streams one model response and then either
runs the requested tools (and goes around again) or validates the captured
diagram. Validation failures are fed back to the model with the error and
the failing text until the retry ceiling is reached.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from . import prompts
from .config import LoopConfig
from .diagram import DiagramText, has_language_keyword
from .errors import (
    DiagramValidationError,
    ExhaustedRetries,
    ExtractionError,
    OutlineError,
    ToolRoundLimitExceeded,
    TurnCancelled,
)
from .models import (
    Message,
    RequestCommand,
    Role,
    ToolCallResult,
    ToolCallRound,
    TurnResult,
    TurnState,
)
from .providers.base import ModelStream
from .session import DiagramSession, Presenter, SessionPresenter
from .streaming import ParsedResponse, StreamingResponseParser, TextSink
from .tools.registry import ToolRegistry
from .tools.workspace import Workspace
from .validator import DiagramValidator, raise_for_outcome

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]
HistoryEntry = Union[ToolCallRound, Message]


@dataclass
class TurnContext:
    """Mutable state of a single turn. Nothing here outlives the turn."""
    request: str
    command: Optional[RequestCommand] = None
    diagram_context: Optional[str] = None
    history: list[HistoryEntry] = field(default_factory=list)
    rounds: list[ToolCallRound] = field(default_factory=list)
    tool_results: dict[str, ToolCallResult] = field(default_factory=dict)
    failures: int = 0
    tool_rounds: int = 0
    model_calls: int = 0
    prose: list[str] = field(default_factory=list)
    last_error: Optional[str] = None
    last_diagram: Optional[str] = None


class ConversationLoop:
    """Drives turns against one session."""

    def __init__(
        self,
        model: ModelStream,
        tools: ToolRegistry,
        validator: DiagramValidator,
        session: Optional[DiagramSession] = None,
        presenter: Optional[Presenter] = None,
        config: Optional[LoopConfig] = None,
        workspace: Optional[str] = None,
        iterate_model: Optional[ModelStream] = None,
    ):
        self.model = model
        self.iterate_model = iterate_model
        self.tools = tools
        self.validator = validator
        self.session = session or DiagramSession()
        self.presenter = presenter or SessionPresenter(self.session)
        self.config = config or LoopConfig()
        self.workspace = workspace

    @property
    def language(self) -> str:
        return self.config.language

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        request: str,
        command: Optional[RequestCommand] = None,
        cancel: Optional[asyncio.Event] = None,
        on_text: Optional[TextSink] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> TurnResult:
        """Run one turn. StreamError from the provider propagates to the caller."""
        async with self.session.turn_lock:
            return await self._run(request, command, cancel, on_text, on_progress)

    async def run_outline(
        self,
        path: str,
        cancel: Optional[asyncio.Event] = None,
        on_text: Optional[TextSink] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> TurnResult:
        """Ask for an outline diagram of one workspace file.

        The file's symbols are sent to the model as JSON. Raises OutlineError
        when the file cannot be outlined.
        """
        if self.workspace is None:
            raise OutlineError("Outlining a file needs a workspace")
        symbols = Workspace(self.workspace).outline(path)
        logger.info("Outlining %s (%d top-level symbols)", path, len(symbols))
        request = prompts.outline_request(path, json.dumps(symbols, indent=2))
        return await self.run_turn(request, RequestCommand.OUTLINE, cancel, on_text, on_progress)

    async def _run(self, request, command, cancel, on_text, on_progress) -> TurnResult:
        if command == RequestCommand.ITERATE and not self.session.has_diagram:
            logger.info("Iterate requested without an existing diagram")
            self._emit(on_text, prompts.ITERATE_WITHOUT_DIAGRAM)
            return TurnResult(state=TurnState.ABANDONED, message=prompts.ITERATE_WITHOUT_DIAGRAM)

        turn = TurnContext(
            request=request,
            command=command,
            diagram_context=self.session.current.content if self.session.current else None,
        )
        model = self.model
        if command == RequestCommand.ITERATE and self.iterate_model is not None:
            model = self.iterate_model

        try:
            while True:
                self._check_cancel(cancel)
                messages = self.build_prompt(turn)
                parsed = await self._stream_response(model, messages, turn, on_text, on_progress)

                if parsed.tool_calls:
                    await self._run_tools(turn, parsed, on_progress)
                    continue

                result = await self._validate(turn, parsed, cancel, on_progress)
                if result is not None:
                    return result
        except ExhaustedRetries as e:
            logger.warning("%s", e)
            message = prompts.ABANDONED_MESSAGE.format(error=e.last_error)
            self._emit(on_text, f"{message}\n\n{e.last_diagram}")
            return self._result(turn, TurnState.ABANDONED, message=message)
        except ToolRoundLimitExceeded as e:
            logger.warning("%s", e)
            self._emit(on_text, str(e))
            return self._result(turn, TurnState.ABANDONED, message=str(e))
        except TurnCancelled as e:
            logger.info("Turn cancelled: %s", e)
            return self._result(turn, TurnState.CANCELLED, message=str(e))

    # ------------------------------------------------------------------
    # BUILD_PROMPT
    # ------------------------------------------------------------------

    def build_prompt(self, turn: TurnContext) -> list[Message]:
        """Assemble the full message sequence for the next model call.

        Tool results are read from the turn's result map, never re-requested.
        The sequence always ends with a user message.
        """
        instructions = "\n".join([
            prompts.system_prompt(self.language),
            prompts.context_prompt(self.workspace, turn.diagram_context),
            "<instructions>",
            prompts.command_prompt(turn.command, self.language),
            "</instructions>",
        ])
        messages = [Message.system(instructions), Message.user(turn.request)]

        for entry in turn.history:
            if isinstance(entry, ToolCallRound):
                messages.append(Message.assistant(entry.response, entry.tool_calls))
                for call in entry.tool_calls:
                    result = turn.tool_results.get(call.call_id) or ToolCallResult(
                        call_id=call.call_id, tool_name=call.name, error="no result recorded",
                    )
                    messages.append(Message.tool_result(result))
            else:
                messages.append(entry)

        if messages[-1].role != Role.USER:
            messages.append(Message.user(prompts.TOOL_RESULTS_FOLLOWUP))
        return messages

    # ------------------------------------------------------------------
    # STREAM_RESPONSE
    # ------------------------------------------------------------------

    async def _stream_response(self, model, messages, turn, on_text, on_progress) -> ParsedResponse:
        turn.model_calls += 1
        parser = StreamingResponseParser(
            on_text=on_text,
            on_capture_start=lambda: self._progress(on_progress, "Capturing diagram from the model..."),
        )
        parsed = await parser.consume(model.stream(messages, self.tools.manifest()))
        turn.prose.append(parsed.prose)
        logger.debug("Round %d: %d tool calls, diagram:\n%s", turn.model_calls, len(parsed.tool_calls), parsed.diagram)
        return parsed

    # ------------------------------------------------------------------
    # TOOLS_PENDING
    # ------------------------------------------------------------------

    async def _run_tools(self, turn: TurnContext, parsed: ParsedResponse, on_progress):
        turn.tool_rounds += 1
        if turn.tool_rounds > self.config.max_tool_rounds:
            raise ToolRoundLimitExceeded(self.config.max_tool_rounds)

        tool_round = ToolCallRound(response=parsed.prose, tool_calls=parsed.tool_calls)
        turn.rounds.append(tool_round)
        turn.history.append(tool_round)

        pending = {}
        for call in parsed.tool_calls:
            if call.call_id not in turn.tool_results and call.call_id not in pending:
                pending[call.call_id] = call
        if not pending:
            return

        self._progress(on_progress, f"Running tools: {', '.join(c.name for c in pending.values())}")
        results = await asyncio.gather(*(self.tools.execute(call) for call in pending.values()))
        for result in results:
            turn.tool_results[result.call_id] = result

    # ------------------------------------------------------------------
    # DIAGRAM_READY / VALIDATE
    # ------------------------------------------------------------------

    async def _validate(self, turn, parsed, cancel, on_progress) -> Optional[TurnResult]:
        """Validate and present the captured diagram.

        Returns the ACCEPTED result, or None after queuing a retry.
        """
        raw = parsed.diagram if parsed.has_diagram else parsed.prose
        try:
            if not parsed.has_diagram:
                raise ExtractionError(prompts.NO_DIAGRAM_ERROR)

            candidate = self.validator.candidate(raw, self.language)
            self._progress(on_progress, "Validating diagram")
            outcome = await self.validator.validate(candidate, cancel)
            raise_for_outcome(outcome)

            diagram = DiagramText(raw, self.language)
            presented = await self.presenter.present(diagram)
            if not presented.success:
                raise DiagramValidationError(presented.error or "the diagram could not be displayed")
        except (ExtractionError, DiagramValidationError) as e:
            if getattr(e, "hint", None):
                logger.debug("Validation hint: %s", e.hint)
            self._register_failure(turn, raw, str(e), on_progress)
            return None

        logger.info("Diagram accepted (%s) after %d failures", outcome.diagram_type, turn.failures)
        return self._result(
            turn,
            TurnState.ACCEPTED,
            diagram=diagram.content,
            diagram_type=outcome.diagram_type,
        )

    def _register_failure(self, turn: TurnContext, raw: str, error: str, on_progress):
        turn.failures += 1
        turn.last_error = error
        turn.last_diagram = raw
        logger.info("Not successful (failure %d): %s", turn.failures, error)

        if turn.failures > self.config.max_validation_retries:
            raise ExhaustedRetries(turn.failures, error, raw)

        if turn.failures == 1:
            if not has_language_keyword(raw, self.language):
                turn.history.append(Message.user(prompts.MISSING_KEYWORD_PROMPT.format(language=self.language)))
            else:
                turn.history.append(Message.user(prompts.NESTED_DEFINITIONS_PROMPT))

        self._progress(on_progress, "Attempting to fix validation errors")
        turn.history.append(Message.user(prompts.fix_parse_error_prompt(error, raw, self.language)))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _result(self, turn: TurnContext, state: TurnState, **kwargs) -> TurnResult:
        return TurnResult(
            state=state,
            last_error=turn.last_error,
            last_diagram=turn.last_diagram,
            retries=min(turn.failures, self.config.max_validation_retries),
            model_calls=turn.model_calls,
            rounds=list(turn.rounds),
            prose="".join(turn.prose),
            **kwargs,
        )

    @staticmethod
    def _check_cancel(cancel: Optional[asyncio.Event]):
        if cancel is not None and cancel.is_set():
            raise TurnCancelled("Turn cancelled before the next model call")

    @staticmethod
    def _emit(on_text: Optional[TextSink], text: str):
        if on_text:
            on_text(text)

    @staticmethod
    def _progress(on_progress: Optional[ProgressSink], message: str):
        logger.info("%s", message)
        if on_progress:
            on_progress(message)
