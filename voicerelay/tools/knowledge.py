"""Knowledge-base question answering with a confidence policy.

The search engine itself is external; this capability only decides what the
model hears when the best match is too weak to quote.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

from voicerelay.config import PolicyThresholds
from voicerelay.tools.base import Capability

AnswerFunction = Callable[[str, str], Awaitable[dict[str, Any]] | dict[str, Any]]
PolicySource = Callable[[str], PolicyThresholds | None]

_LOW_CONFIDENCE_MESSAGES = {
    "TRANSFER": (
        "I'm not confident I have the right information for that question. "
        "Let me transfer you to someone who can help better."
    ),
    "VOICEMAIL": (
        "I'm not sure I have the right answer for that. Would you like to leave "
        "a message and we'll get back to you with the correct information?"
    ),
    "CLARIFY": (
        "I'm not entirely sure about that. Could you rephrase your question or "
        "ask about something more specific like services, pricing, or "
        "appointment availability?"
    ),
}

_ACTIONS = {"transfer": "TRANSFER", "voicemail": "VOICEMAIL", "ask_clarify": "CLARIFY"}


def normalize_language(language: Any) -> str:
    """First five characters, lowercased. Empty means English."""
    return (str(language or "") or "en")[:5].lower()


class KnowledgeBaseCapability(Capability):
    """``answerQuestion`` tool.

    Args:
        answer_question: ``(question, language) -> {"context": str, "sources": [...]}``
            where each source may carry a ``score``; sources are best-first.
        policy: Fixed thresholds, or a callable mapping the call id to the
            thresholds resolved for that call (None falls back to defaults).
    """

    def __init__(
        self,
        answer_question: AnswerFunction,
        policy: PolicyThresholds | PolicySource | None = None,
    ) -> None:
        self._answer = answer_question
        self._policy = policy

    def _resolve_policy(self, call_id: str) -> PolicyThresholds:
        if isinstance(self._policy, PolicyThresholds):
            return self._policy
        if callable(self._policy):
            return self._policy(call_id) or PolicyThresholds()
        return PolicyThresholds()

    async def invoke(self, args: dict[str, Any]) -> dict[str, Any]:
        question = str(args.get("question") or "").strip()
        if not question:
            return {"ok": False, "error": "question is required"}
        language = normalize_language(args.get("language"))

        result = self._answer(question, language)
        if inspect.isawaitable(result):
            result = await result
        result = dict(result or {})
        sources = list(result.get("sources") or [])

        top_confidence = 0.0
        if sources and isinstance(sources[0], dict):
            top_confidence = float(sources[0].get("score") or 0.0)

        policy = self._resolve_policy(str(args.get("callId") or ""))
        if top_confidence < policy.kb_min_confidence:
            action = _ACTIONS.get(policy.low_confidence_action, "CLARIFY")
            logger.info(
                f"Low-confidence answer ({top_confidence:.2f} < "
                f"{policy.kb_min_confidence:.2f}), action: {action}"
            )
            response: dict[str, Any] = {
                "ok": False,
                "lowConfidence": True,
                "action": action,
                "message": _LOW_CONFIDENCE_MESSAGES[action],
            }
            if action == "CLARIFY":
                response["partialContext"] = result.get("context", "")
                response["sources"] = sources
            return response

        return {**result, "ok": True, "confidenceOk": True, "topConfidence": top_confidence}
