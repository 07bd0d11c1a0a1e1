"""Hybrid intent classifier — pattern detectors first, LLM fallback second.

Flow for one question:
  1. Run every detector in its fixed order and keep the non-null candidates.
  2. Pick the most confident candidate; accept it when it reaches the
     threshold (0.85) with ``method=pattern``.
  3. Otherwise ask the LLM to choose among all intents (``method=ai``).
  4. Any failure degrades to ``legacy_unknown`` with ``method=fallback``.

Caching lives in ``CachingIntentClassifier``, a decorator around the
uncached classifier.
"""

import logging
from collections.abc import Sequence

from semantic_query.application.interfaces import ChatProvider
from semantic_query.application.services.intent_detectors import (
    DEFAULT_DETECTORS,
    IntentDetector,
)
from semantic_query.application.services.llm_support import complete_text, parse_llm_json
from semantic_query.application.services.ttl_cache import TTLCache, cache_key
from semantic_query.domain.entities import (
    ClassificationMethod,
    ClassificationResult,
    IntentCandidate,
    Outcome,
    QueryIntent,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.85
"""Minimum pattern confidence accepted without asking the LLM."""

AI_TEMPERATURE = 0.1
AI_MAX_TOKENS = 200
DEFAULT_AI_TIMEOUT_S = 60.0

_CLASSIFIER_SYSTEM_PROMPT = """You are an intent classifier for healthcare data queries.
Your task is to classify user questions into one of the predefined intent types.

Be precise and consider the context carefully. Return your classification with a confidence score."""


def build_classification_prompt(question: str, intents: Sequence[QueryIntent] = tuple(QueryIntent)) -> str:
    """User prompt listing every intent with its description."""
    intents_list = "\n".join(f"- {i.value}: {i.description}" for i in intents)
    return (
        "Classify the following query into one of these intent types:\n\n"
        "Available intents:\n"
        f"{intents_list}\n\n"
        f'Query: "{question}"\n\n'
        "Respond in JSON format:\n"
        "{\n"
        '  "intent": "<intent_type>",\n'
        '  "confidence": <0.0-1.0>,\n'
        '  "reasoning": "<brief explanation>"\n'
        "}"
    )


def parse_classification_response(text: str) -> Outcome[ClassificationResult]:
    """Turn the LLM reply into an ``ai`` classification, or a failure."""
    data = parse_llm_json(text)
    if data is None:
        return Outcome.failure("AI response was not valid JSON")

    raw_intent = str(data.get("intent", "")).strip()
    try:
        intent = QueryIntent(raw_intent)
    except ValueError:
        return Outcome.failure(f"AI returned unknown intent '{raw_intent}'")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return Outcome.failure("AI response is missing a numeric confidence")
    if not 0.0 <= confidence <= 1.0:
        return Outcome.failure(f"AI confidence {confidence} is outside [0, 1]")

    return Outcome.success(ClassificationResult(
        intent=intent,
        confidence=float(confidence),
        method=ClassificationMethod.AI,
        reasoning=str(data.get("reasoning") or ""),
    ))


def run_detectors(question: str, detectors: Sequence[IntentDetector] = DEFAULT_DETECTORS) -> list[IntentCandidate]:
    """Evaluate detectors in order; keep the non-null candidates."""
    candidates = []
    for detector in detectors:
        candidate = detector.detect(question)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def select_candidate(
    candidates: Sequence[IntentCandidate],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> tuple[IntentCandidate | None, ClassificationResult | None]:
    """Pick the most confident candidate and decide whether it is trusted.

    Returns ``(best, accepted)``. ``accepted`` is a pattern classification
    when ``best`` reaches ``threshold``, else None and the caller delegates
    to the LLM. Ties keep detector order.
    """
    if not candidates:
        return None, None
    best = sorted(candidates, key=lambda c: c.confidence, reverse=True)[0]
    if best.confidence < threshold:
        return best, None
    return best, ClassificationResult(
        intent=best.intent,
        confidence=best.confidence,
        method=ClassificationMethod.PATTERN,
        matched_patterns=best.matched_patterns,
    )


def fallback_result(message: str) -> ClassificationResult:
    return ClassificationResult(
        intent=QueryIntent.LEGACY_UNKNOWN,
        confidence=0.0,
        method=ClassificationMethod.FALLBACK,
        reasoning=f"Classification failed: {message}. Please rephrase your question.",
    )


class IntentClassifier:
    """Uncached hybrid classifier. ``classify`` never raises for bad input."""

    def __init__(
        self,
        chat_provider: ChatProvider | None,
        model: str = "",
        *,
        detectors: Sequence[IntentDetector] = DEFAULT_DETECTORS,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        ai_timeout_s: float = DEFAULT_AI_TIMEOUT_S,
    ):
        self._chat_provider = chat_provider
        self._model = model
        self._detectors = tuple(detectors)
        self._threshold = threshold
        self._ai_timeout_s = ai_timeout_s

    async def classify(self, question: str) -> ClassificationResult:
        if not question or not question.strip():
            return fallback_result("question is empty")

        candidates = run_detectors(question, self._detectors)
        best, accepted = select_candidate(candidates, self._threshold)
        if accepted is not None:
            logger.info(
                "Pattern match: %s (%.2f) %s",
                accepted.intent.value, accepted.confidence, list(accepted.matched_patterns),
            )
            return accepted

        logger.info(
            "Low pattern confidence (%.2f), using AI fallback",
            best.confidence if best else 0.0,
        )
        outcome = await self._classify_with_ai(question)
        if not outcome.ok:
            logger.warning("AI classification failed: %s", outcome.error)
            return fallback_result(outcome.error)

        result = outcome.value
        if best is not None and best.intent != result.intent:
            logger.warning(
                "Pattern-AI disagreement for %r: pattern=%s (%.2f) ai=%s (%.2f)",
                question, best.intent.value, best.confidence,
                result.intent.value, result.confidence,
            )
        logger.info("AI classification: %s (%.2f)", result.intent.value, result.confidence)
        return result

    async def _classify_with_ai(self, question: str) -> Outcome[ClassificationResult]:
        if self._chat_provider is None:
            return Outcome.failure("no AI provider is configured")

        reply = await complete_text(
            self._chat_provider,
            system_prompt=_CLASSIFIER_SYSTEM_PROMPT,
            user_prompt=build_classification_prompt(question),
            model=self._model,
            temperature=AI_TEMPERATURE,
            max_tokens=AI_MAX_TOKENS,
            timeout_s=self._ai_timeout_s,
            feature="intent_classification",
        )
        if not reply.ok:
            return Outcome.failure(reply.error)
        return parse_classification_response(reply.value)


class CachingIntentClassifier:
    """Caches classifications per (customer, question).

    Pattern and AI results live in separate TTL caches; fallback results are
    never cached so a transient LLM failure is retried on the next ask.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        *,
        pattern_ttl_ms: int = 3_600_000,
        ai_ttl_ms: int = 3_600_000,
    ):
        self._classifier = classifier
        self.pattern_cache: TTLCache[ClassificationResult] = TTLCache(
            pattern_ttl_ms, name="intent-pattern"
        )
        self.ai_cache: TTLCache[ClassificationResult] = TTLCache(ai_ttl_ms, name="intent-ai")

    async def classify(
        self,
        question: str,
        customer_id: str,
        *,
        enable_cache: bool = True,
    ) -> ClassificationResult:
        if not enable_cache:
            return await self._classifier.classify(question)

        key = cache_key(customer_id, question)
        cached = self.pattern_cache.get(key) or self.ai_cache.get(key)
        if cached is not None:
            logger.debug("Intent cache hit for customer %s", customer_id)
            return cached

        result = await self._classifier.classify(question)
        if result.method == ClassificationMethod.PATTERN:
            self.pattern_cache.set(key, result)
        elif result.method == ClassificationMethod.AI:
            self.ai_cache.set(key, result)
        return result

    def caches(self) -> list[TTLCache[ClassificationResult]]:
        return [self.pattern_cache, self.ai_cache]

    def cleanup_expired(self) -> int:
        return sum(cache.cleanup_expired() for cache in self.caches())
