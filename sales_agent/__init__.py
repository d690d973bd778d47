from .graph import ConversationTurnResult, Orchestrator, answer

__all__ = ["ConversationTurnResult", "Orchestrator", "answer"]
