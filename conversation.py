# conversation.py
"""Guided chat phases: collecte -> verification -> proposition -> test.

The step logic only computes the intended next step and config mode. Writing
them back is a single ``store.update_step`` call made by ``run_exchange``.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from chat_client import ChatProviderError
from constants import (
    MODE_KEYWORDS, QUICK_MODE_KEYWORDS, TERRAIN_QUESTION_KEYWORDS, VERIFICATION_KEYWORDS,
    FEEDBACK_INVITE_KEYWORDS, CHAT_FALLBACK_REPLY, SETTING_FIELDS,
)
from store import RecordNotFound, StoreError

logger = logging.getLogger(__name__)


class ConversationStep(str, Enum):
    COLLECTE = "collecte"
    VERIFICATION = "verification"
    PROPOSITION = "proposition"
    TEST = "test"


QUICK_MODE, STEP_BY_STEP_MODE = "rapide", "pas-a-pas"


@dataclass(frozen=True)
class StepTransition:
    step: ConversationStep
    config_mode: Optional[str] = None
    changed: bool = False

    @property
    def needs_write(self):
        return self.changed or self.config_mode is not None


@dataclass
class ExchangeResult:
    response: str
    config: Optional[dict] = None
    transition: Optional[StepTransition] = None
    persisted: bool = True
    provider_failed: bool = False


def _contains_any(text, keywords):
    lowered = (text or "").lower()
    return any(k in lowered for k in keywords)


class IntentClassifier(ABC):
    """Reads intent out of the user message and the assistant reply."""

    @abstractmethod
    def requested_mode(self, user_text):
        """Returns "rapide", "pas-a-pas" or None."""

    @abstractmethod
    def asks_terrain(self, response_text):
        pass

    @abstractmethod
    def announces_verification(self, response_text):
        pass

    @abstractmethod
    def invites_feedback(self, response_text):
        pass


class KeywordIntentClassifier(IntentClassifier):
    """Case-insensitive substring matching on fixed French phrases."""

    def requested_mode(self, user_text):
        if not _contains_any(user_text, MODE_KEYWORDS):
            return None
        return QUICK_MODE if _contains_any(user_text, QUICK_MODE_KEYWORDS) else STEP_BY_STEP_MODE

    def asks_terrain(self, response_text):
        return _contains_any(response_text, TERRAIN_QUESTION_KEYWORDS)

    def announces_verification(self, response_text):
        return _contains_any(response_text, VERIFICATION_KEYWORDS)

    def invites_feedback(self, response_text):
        return _contains_any(response_text, FEEDBACK_INVITE_KEYWORDS)


def next_step(step, user_text, response_text, has_config, classifier=None):
    """Computes the step that follows one chat exchange.

    No ordering is enforced between steps: the result depends only on the
    step passed in, so a stale caller can move a conversation backwards.
    """
    classifier = classifier or KeywordIntentClassifier()
    current = ConversationStep(step)
    target = current
    config_mode = None

    if current is ConversationStep.COLLECTE:
        config_mode = classifier.requested_mode(user_text)
        if has_config:
            target = ConversationStep.PROPOSITION
        elif not classifier.asks_terrain(response_text) and classifier.announces_verification(response_text):
            target = ConversationStep.VERIFICATION
    elif current is ConversationStep.VERIFICATION:
        if has_config:
            target = ConversationStep.PROPOSITION
    elif current is ConversationStep.PROPOSITION:
        if classifier.invites_feedback(response_text):
            target = ConversationStep.TEST

    return StepTransition(step=target, config_mode=config_mode, changed=target is not current)


def describe_context(moto=None, kit=None):
    """Renders the moto and kit facts sent along with each chat message."""
    lines = []
    if moto:
        lines.append(f"Moto: {moto.get('brand', '')} {moto.get('model', '')} {moto.get('year', '')}".strip())
    if kit:
        lines.append(f"Kit: {kit.get('name', '')}")
        if kit.get("sport_type"):
            lines.append(f"Discipline: {kit['sport_type']}")
        if kit.get("terrain_type"):
            lines.append(f"Terrain: {kit['terrain_type']}")
        if kit.get("fork_brand") or kit.get("shock_brand"):
            lines.append(f"Suspensions: fourche {kit.get('fork_brand') or '?'}, amortisseur {kit.get('shock_brand') or '?'}")
        for field in SETTING_FIELDS:
            if kit.get(field) is not None:
                max_value = kit.get(f"max_{field}")
                lines.append(f"{field}: {kit[field]}" + (f" / max {max_value}" if max_value is not None else ""))
    return "\n".join(lines)


def run_exchange(store, generate, conversation_id, user_text, context=None, classifier=None):
    """Runs one user -> assistant exchange and records the resulting step.

    ``generate(user_text, history, context)`` returns a dict with ``response``
    and an optional ``config``. Provider failures become a fixed apology and
    leave the step untouched. A failed step write is logged and reported
    through ``ExchangeResult.persisted``.
    """
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        raise RecordNotFound(f"conversation {conversation_id} not found")

    history = store.list_messages(conversation_id)
    store.add_message(conversation_id, "user", user_text)

    try:
        reply = generate(user_text, history, context)
        if reply.get("error"):
            raise ChatProviderError(reply["error"])
    except (ChatProviderError, requests.RequestException, ValueError) as exc:
        logger.warning("Chat provider failed for conversation %s: %s", conversation_id, exc)
        store.add_message(conversation_id, "assistant", CHAT_FALLBACK_REPLY)
        return ExchangeResult(response=CHAT_FALLBACK_REPLY, provider_failed=True)

    response_text = reply.get("response") or ""
    # An empty settings object is not a proposal
    config = reply.get("config") or None
    store.add_message(conversation_id, "assistant", response_text, metadata={"config": config} if config else None)

    transition = next_step(conversation["step"], user_text, response_text, config is not None, classifier)
    result = ExchangeResult(response=response_text, config=config, transition=transition)
    if transition.needs_write:
        try:
            store.update_step(conversation_id, transition.step.value, config_mode=transition.config_mode)
        except StoreError:
            logger.exception("Could not record step %s for conversation %s", transition.step.value, conversation_id)
            result.persisted = False
        else:
            logger.info("Conversation %s: %s -> %s", conversation_id, conversation["step"], transition.step.value)
    return result
