"""Keyword-matching bot used as the bot-reply service.

Scores each knowledge entry against the message: one point per keyword found,
two more when the entry's question appears verbatim. The best positive score
wins; priority 2 entries ask for escalation.
"""
import logging
from typing import List, Optional
from pydantic import BaseModel, Field
from src.livechat.chat.gateway import BotService
from src.livechat.models.chat import BotReply
from src.livechat.utils.knowledge_loader import KnowledgeLoader

logger = logging.getLogger(__name__)

ESCALATION_PRIORITY = 2


class KnowledgeEntry(BaseModel):
    question: str
    answer: str
    category: str = "general"
    keywords: List[str] = Field(default_factory=list)
    priority: int = 1
    is_active: bool = True

    def score(self, message: str) -> int:
        score = sum(1 for kw in self.keywords if kw.lower() in message)
        if self.question.lower() in message:
            score += 2
        return score


class KeywordBotResponder(BotService):
    def __init__(
        self,
        entries: List[KnowledgeEntry],
        default_reply: str,
        escalation_reply: str,
        escalation_keywords: List[str]
    ):
        self.entries = [entry for entry in entries if entry.is_active]
        self.default_reply = default_reply
        self.escalation_reply = escalation_reply
        self.escalation_keywords = [kw.lower() for kw in escalation_keywords]

    @classmethod
    def from_config(cls, bot_cfg) -> "KeywordBotResponder":
        knowledge = KnowledgeLoader.load(bot_cfg.knowledge_file)
        entries = [
            KnowledgeEntry.model_validate(item)
            for item in knowledge.get("responses", [])
        ]
        logger.info(f"Bot knowledge base has {len(entries)} responses")
        return cls(
            entries,
            default_reply=bot_cfg.default_reply,
            escalation_reply=bot_cfg.escalation_reply,
            escalation_keywords=list(bot_cfg.escalation_keywords),
        )

    def best_match(self, text: str) -> Optional[KnowledgeEntry]:
        message = text.lower()
        best, best_score = None, 0
        for entry in self.entries:
            score = entry.score(message)
            if score > best_score:
                best, best_score = entry, score
        return best

    async def bot_reply(self, session_id: str, text: str) -> BotReply:
        match = self.best_match(text)
        if match is not None:
            return BotReply(
                body=match.answer,
                escalate=match.priority == ESCALATION_PRIORITY,
            )
        message = text.lower()
        if any(kw in message for kw in self.escalation_keywords):
            return BotReply(body=self.escalation_reply, escalate=True)
        return BotReply(body=self.default_reply, escalate=False)
