"""Diagram text normalization and inspection."""

import re
from dataclasses import dataclass, field
from typing import Optional

from .config import DEFAULT_LANGUAGE

FENCE = "```"

# Two backticks are enough to start capturing; models sometimes emit the
# fence split across stream chunks.
FENCE_OPEN_RE = re.compile(r"`{2,}")

_TRAILING_FENCE_RE = re.compile(r"`{3,}\s*$")

DIAGRAM_TYPES = (
    "classDiagram",
    "sequenceDiagram",
    "flowchart",
    "graph",
    "stateDiagram-v2",
    "stateDiagram",
    "erDiagram",
    "journey",
    "gantt",
    "pie",
    "quadrantChart",
    "requirementDiagram",
    "gitGraph",
    "C4Context",
    "C4Container",
    "C4Component",
    "C4Dynamic",
    "C4Deployment",
    "mindmap",
    "timeline",
    "sankey-beta",
    "xychart-beta",
    "block-beta",
    "packet-beta",
    "architecture-beta",
    "kanban",
)


def _leading_fence_re(language: str) -> re.Pattern:
    return re.compile(rf"^`{{3,}}[ \t]*{re.escape(language)}(?![\w-])")


def strip_fences_once(text: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Strip one opening ```<language> fence and one closing fence, then trim."""
    text = text.strip()
    text = _leading_fence_re(language).sub("", text, count=1)
    text = _TRAILING_FENCE_RE.sub("", text, count=1)
    return text.strip()


def normalize(raw: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Strip the opening ```<language> fence and the closing fence, then trim.

    Text without fences is returned trimmed. Stripping repeats until nothing
    changes, so normalizing twice gives the same result as normalizing once.
    """
    current = raw
    while True:
        stripped = strip_fences_once(current, language)
        if stripped == current:
            return stripped
        current = stripped


def contains_fence(source: str) -> bool:
    """Whether a fence sequence survives inside a diagram body."""
    return FENCE in source


def has_language_keyword(raw: str, language: str = DEFAULT_LANGUAGE) -> bool:
    """Whether the language tag directly follows the first opening fence."""
    match = FENCE_OPEN_RE.search(raw)
    if match is None:
        return False
    rest = raw[match.end():].lstrip("` \t")
    return re.match(rf"{re.escape(language)}(?![\w-])", rest) is not None


def detect_diagram_type(source: str) -> Optional[str]:
    """Return the Mermaid diagram-type keyword that opens the source, if any."""
    in_front_matter = False
    for index, line in enumerate(source.splitlines()):
        stripped = line.strip()
        if index == 0 and stripped == "---":
            in_front_matter = True
            continue
        if in_front_matter:
            if stripped == "---":
                in_front_matter = False
            continue
        if not stripped or stripped.startswith("%%"):
            continue
        keyword = stripped.split()[0]
        return keyword if keyword in DIAGRAM_TYPES else None
    return None


@dataclass(frozen=True)
class DiagramText:
    """Raw model output paired with its normalized diagram source."""
    raw: str
    language: str = DEFAULT_LANGUAGE
    content: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "content", normalize(self.raw, self.language))

    @property
    def diagram_type(self) -> Optional[str]:
        return detect_diagram_type(self.content)

    def __str__(self) -> str:
        return self.content
