from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from agents.llm_runtime import LLMRuntime
from errors import GenerationFailure
from memory.rolling_history import RollingHistory
from memory.training_corpus import TrainingCorpus
from models.schemas import AISettings, AISettingsUpdate, TrainingEntry
from settings import SETTINGS

logger = logging.getLogger(__name__)


FALLBACK_REPLY = (
    "I'm experiencing some technical difficulties at the moment. "
    "Let me connect you with one of our human agents who can help you right away."
)
ESCALATION_REPLY = (
    "I'd like to connect you with one of our specialist agents who can better assist with this specific issue. "
    "They'll be with you shortly."
)


class AutomatedResponseEngine:
    def __init__(
        self,
        llm: LLMRuntime | None = None,
        corpus: TrainingCorpus | None = None,
        settings: AISettings | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.llm = llm or LLMRuntime()
        self.corpus = TrainingCorpus() if corpus is None else corpus
        self.settings = settings or AISettings.from_settings()
        self.timeout_seconds = SETTINGS.llm_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.history = RollingHistory(limit=self.settings.history_limit)

    async def respond(
        self,
        conversation_id: int,
        customer_message: str,
        customer_display_name: str | None = None,
        customer_info: Dict[str, Any] | None = None,
    ) -> str:
        self.history.append(conversation_id, "user", customer_message)

        match = self.corpus.best_match(customer_message, self.settings.match_threshold)
        if match is not None:
            entry, score = match
            logger.info(
                "auto_reply_corpus_match",
                extra={"conversation_id": conversation_id, "category": entry.category, "score": round(score, 3)},
            )
            reply = entry.answer
        else:
            reply = await self._generate(conversation_id, customer_message, customer_display_name, customer_info or {})

        self.history.append(conversation_id, "assistant", reply)
        return reply

    async def _generate(
        self,
        conversation_id: int,
        customer_message: str,
        customer_display_name: str | None,
        customer_info: Dict[str, Any],
    ) -> str:
        system_prompt = self.build_system_prompt(customer_message, customer_display_name, customer_info)
        try:
            result = await asyncio.wait_for(
                self.llm.generate(
                    system_prompt,
                    self.history.window(conversation_id),
                    temperature=self.settings.temperature,
                    max_tokens=math.ceil(self.settings.max_response_length * 1.5),
                    model=self.settings.model,
                ),
                timeout=self.timeout_seconds,
            )
            text = (result.text or "").strip()
            if not text:
                raise GenerationFailure("empty completion")
            return text
        except asyncio.TimeoutError:
            logger.warning("auto_reply_generation_timeout", extra={"conversation_id": conversation_id, "timeout_s": self.timeout_seconds})
        except GenerationFailure as exc:
            logger.warning("auto_reply_generation_failed", extra={"conversation_id": conversation_id, "error": str(exc)})
        except Exception:
            logger.exception("auto_reply_generation_crashed", extra={"conversation_id": conversation_id})
        return FALLBACK_REPLY

    def build_system_prompt(self, customer_message: str, customer_name: str | None, customer_info: Dict[str, Any]) -> str:
        knowledge = "\n\n".join(f"Q: {e.question}\nA: {e.answer}" for e in self.corpus.relevant(customer_message))
        context_lines = [f"Customer name: {customer_name}" if customer_name else "Anonymous customer"]
        for label, key in (("Email", "email"), ("Location", "country"), ("Timezone", "timezone")):
            if customer_info.get(key):
                context_lines.append(f"{label}: {customer_info[key]}")
        return (
            "You are an AI customer support assistant for HelpBoard and handle most customer inquiries on your own.\n\n"
            "PERSONALITY & TONE:\n"
            "- Be professional, empathetic, and solution-focused\n"
            "- Use a friendly but efficient tone\n\n"
            f"KNOWLEDGE BASE:\n{knowledge or '(no matching entries)'}\n\n"
            f"CUSTOMER CONTEXT:\n" + "\n".join(context_lines) + "\n\n"
            "GUIDELINES:\n"
            "1. Always try to solve the customer's problem first\n"
            "2. Provide specific, actionable solutions\n"
            "3. If you cannot help, explain why and offer to connect them with a human agent\n"
            f"4. Keep responses under {self.settings.max_response_length} words\n"
            "5. Ask follow-up questions to better understand complex issues\n\n"
            "ESCALATION TRIGGERS:\n"
            "- Complex technical issues requiring system access\n"
            "- Billing disputes or refund requests over $100\n"
            "- Account security concerns\n"
            "- Customer explicitly requests a human agent\n"
            "- Complaints about service quality\n\n"
            f'If escalation is needed, say: "{ESCALATION_REPLY}"'
        )

    def clear_history(self, conversation_id: int) -> None:
        if self.history.clear(conversation_id):
            logger.info("auto_reply_history_cleared", extra={"conversation_id": conversation_id})

    def history_for(self, conversation_id: int) -> List[Dict[str, str]]:
        return self.history.window(conversation_id)

    # Training corpus

    def get_training_data(self) -> List[TrainingEntry]:
        return self.corpus.list()

    def add_training_data(self, entry: TrainingEntry) -> TrainingEntry:
        return self.corpus.add(entry)

    def update_training_data(self, index: int, entry: TrainingEntry) -> TrainingEntry:
        return self.corpus.update(index, entry)

    def remove_training_data(self, index: int) -> TrainingEntry:
        return self.corpus.remove(index)

    def train_from_conversation(self, conversation_id: int, customer_messages: Sequence[str], agent_responses: Sequence[str]) -> int:
        if len(customer_messages) != len(agent_responses):
            return 0
        learned = 0
        for question, answer in zip(customer_messages, agent_responses):
            if len(answer) > 10 and "I don't know" not in answer:
                self.corpus.add(
                    TrainingEntry(
                        question=question,
                        answer=answer,
                        category="conversation_learned",
                        context=f"Learned from conversation {conversation_id}",
                    )
                )
                learned += 1
        logger.info("training_learned_from_conversation", extra={"conversation_id": conversation_id, "learned": learned})
        return learned

    # Settings and stats

    def get_settings(self) -> AISettings:
        return self.settings.model_copy()

    def update_settings(self, update: AISettingsUpdate) -> AISettings:
        changes = update.model_dump(exclude_none=True)
        self.settings = AISettings.model_validate({**self.settings.model_dump(), **changes})
        self.history.resize(self.settings.history_limit)
        logger.info("ai_settings_updated", extra={"fields": sorted(changes)})
        return self.get_settings()

    def get_stats(self) -> Dict[str, int]:
        return {
            "totalExamples": self.history.turn_count(),
            "conversationPatterns": self.history.conversation_count(),
            "trainingDataCount": len(self.corpus),
            "categoriesCount": len(self.corpus.categories()),
            "averageResponseLength": self.corpus.average_answer_length(),
        }

    async def analyze_sentiment(self, messages: Sequence[str]) -> Dict[str, Any]:
        neutral: Dict[str, Any] = {
            "sentiment": "neutral",
            "confidence": 0.5,
            "suggestions": ["Unable to analyze conversation sentiment"],
        }
        system_prompt = (
            "Analyze the sentiment of this customer support conversation and provide suggestions for improvement. "
            'Respond with JSON format: { "sentiment": "positive/neutral/negative", "confidence": 0.0-1.0, '
            '"suggestions": ["suggestion1", "suggestion2"] }'
        )
        try:
            result = await asyncio.wait_for(
                self.llm.generate(
                    system_prompt,
                    [{"role": "user", "content": "\n".join(messages)}],
                    temperature=0.3,
                    model=self.settings.model,
                    response_format="json",
                ),
                timeout=self.timeout_seconds,
            )
            data = json.loads(result.text)
            if not isinstance(data, dict):
                raise GenerationFailure("sentiment payload is not an object")
            suggestions: Optional[List[Any]] = data.get("suggestions")
            return {
                "sentiment": str(data.get("sentiment") or "neutral"),
                "confidence": float(data.get("confidence") or 0.5),
                "suggestions": [str(s) for s in suggestions] if isinstance(suggestions, list) else [],
            }
        except (asyncio.TimeoutError, GenerationFailure, TypeError, ValueError) as exc:
            logger.warning("sentiment_analysis_failed", extra={"error": repr(exc)})
            return neutral
