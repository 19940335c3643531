"""diagram-chat - conversational, self-correcting Mermaid diagram generation."""

from .models import (
    Role,
    RequestCommand,
    Message,
    ToolCallRequest,
    ToolCallResult,
    ToolCallRound,
    TextChunk,
    ToolCallChunk,
    DiagramCandidate,
    ValidationSuccess,
    ValidationFailure,
    MalformedExtraction,
    TurnState,
    TurnResult,
)

from .config import (
    ModelProvider,
    LoopConfig,
    get_model_name,
    get_loop_config,
    print_config,
)

from .errors import (
    DiagramChatError,
    ExtractionError,
    DiagramValidationError,
    StreamError,
    OutlineError,
    ToolError,
    UnknownTool,
    InvalidArguments,
    ToolExecutionFailed,
    ValidationTimeout,
    ExhaustedRetries,
    ToolRoundLimitExceeded,
    TurnCancelled,
)

from .diagram import (
    DiagramText,
    normalize,
    detect_diagram_type,
)

from .streaming import (
    StreamingResponseParser,
    ParsedResponse,
    adapt_delta_chunk,
)

from .tools import (
    Tool,
    ToolRegistry,
    build_workspace_registry,
)

from .validator import (
    CorrelationChannel,
    DiagramValidator,
    MermaidCliBackend,
)

from .session import (
    DiagramSession,
    SessionPresenter,
)

from .orchestrator import ConversationLoop

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Models
    "Role",
    "RequestCommand",
    "Message",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCallRound",
    "TextChunk",
    "ToolCallChunk",
    "DiagramCandidate",
    "ValidationSuccess",
    "ValidationFailure",
    "MalformedExtraction",
    "TurnState",
    "TurnResult",
    # Config
    "ModelProvider",
    "LoopConfig",
    "get_model_name",
    "get_loop_config",
    "print_config",
    # Errors
    "DiagramChatError",
    "ExtractionError",
    "DiagramValidationError",
    "StreamError",
    "OutlineError",
    "ToolError",
    "UnknownTool",
    "InvalidArguments",
    "ToolExecutionFailed",
    "ValidationTimeout",
    "ExhaustedRetries",
    "ToolRoundLimitExceeded",
    "TurnCancelled",
    # Diagram text
    "DiagramText",
    "normalize",
    "detect_diagram_type",
    # Streaming
    "StreamingResponseParser",
    "ParsedResponse",
    "adapt_delta_chunk",
    # Tools
    "Tool",
    "ToolRegistry",
    "build_workspace_registry",
    # Validation
    "CorrelationChannel",
    "DiagramValidator",
    "MermaidCliBackend",
    # Session
    "DiagramSession",
    "SessionPresenter",
    # Loop
    "ConversationLoop",
]
