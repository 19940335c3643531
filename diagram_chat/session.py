"""Session state shared across turns and the presentation hand-off."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from .diagram import DiagramText
from .models import PresentationResult

logger = logging.getLogger(__name__)


@dataclass
class DiagramSession:
    """Owns the current diagram that later turns (e.g. 'iterate') refer to.

    Turns against one session are serialized through ``turn_lock``.
    """
    current: Optional[DiagramText] = None
    history: list[DiagramText] = field(default_factory=list)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def replace(self, diagram: DiagramText) -> Optional[DiagramText]:
        """Make ``diagram`` current and return the one it replaces."""
        previous = self.current
        self.current = diagram
        self.history.append(diagram)
        return previous

    def clear(self):
        self.current = None

    @property
    def has_diagram(self) -> bool:
        return self.current is not None


class Presenter(Protocol):
    """Shows an accepted diagram and reports whether that worked."""

    async def present(self, diagram: DiagramText) -> PresentationResult:
        ...


class SessionPresenter:
    """Stores the accepted diagram as the session's current diagram."""

    def __init__(self, session: DiagramSession, on_present: Optional[Callable[[DiagramText], None]] = None):
        self.session = session
        self.on_present = on_present

    async def present(self, diagram: DiagramText) -> PresentationResult:
        if not diagram.content:
            return PresentationResult(success=False, error="Nothing to display")
        if self.on_present:
            try:
                self.on_present(diagram)
            except Exception as e:
                logger.exception("Presenting diagram failed")
                return PresentationResult(success=False, error=str(e))
        self.session.replace(diagram)
        return PresentationResult(success=True)
