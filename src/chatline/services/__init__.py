from .providers import GenerationProvider, GeminiProvider, MockProvider, HistoryEntry, build_provider
from .generation_client import GenerationClient, RetryState, build_generation_client
from .conversation_service import ConversationService, get_owned_conversation
from .send_orchestrator import SendOrchestrator, SendResult, Completed, Processing, Failed
from .title_synthesizer import TitleSynthesizer, TitleOutcome, should_auto_title
from .pending_reply import complete_pending_reply, build_reply_scheduler

__all__ = [
    "GenerationProvider",
    "GeminiProvider",
    "MockProvider",
    "HistoryEntry",
    "build_provider",
    "GenerationClient",
    "RetryState",
    "build_generation_client",
    "ConversationService",
    "get_owned_conversation",
    "SendOrchestrator",
    "SendResult",
    "Completed",
    "Processing",
    "Failed",
    "TitleSynthesizer",
    "TitleOutcome",
    "should_auto_title",
    "complete_pending_reply",
    "build_reply_scheduler",
]
