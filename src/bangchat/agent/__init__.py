from bangchat.agent.orchestrator import ExchangeResult, SessionOrchestrator
from bangchat.agent.stream_parser import ParseMode, ParseState, StreamParser, ThinkSplit, TurnOutput

__all__ = [
    "ExchangeResult",
    "SessionOrchestrator",
    "ParseMode",
    "ParseState",
    "StreamParser",
    "ThinkSplit",
    "TurnOutput",
]
