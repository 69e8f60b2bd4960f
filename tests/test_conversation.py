"""Tests for chat step transitions and the exchange workflow."""

import pytest
import requests

from chat_client import ChatProviderError, extract_config
from constants import CHAT_FALLBACK_REPLY
from conversation import (
    QUICK_MODE,
    STEP_BY_STEP_MODE,
    ConversationStep,
    KeywordIntentClassifier,
    describe_context,
    next_step,
    run_exchange,
)
from store import RecordNotFound, StoreError


def replying(response, config=None):
    calls = []

    def generate(user_text, history, context):
        calls.append((user_text, list(history), context))
        return {"response": response, "config": config}

    generate.calls = calls
    return generate


class TestNextStep:
    def test_mode_detected_during_collecte(self):
        t = next_step("collecte", "je veux du rapide", "Super, quel est ton poids ?", False)
        assert t.step is ConversationStep.COLLECTE
        assert t.config_mode == QUICK_MODE
        assert not t.changed
        assert t.needs_write

    def test_config_during_collecte_jumps_to_proposition(self):
        t = next_step("collecte", "bonjour", "Voici ma proposition.", True)
        assert t.step is ConversationStep.PROPOSITION
        assert t.config_mode is None
        assert t.changed

    def test_verification_announced(self):
        t = next_step("collecte", "80kg, niveau confirmé", "Vérifions la cohérence de ton sag.", False)
        assert t.step is ConversationStep.VERIFICATION

    def test_terrain_question_blocks_verification(self):
        t = next_step("collecte", "ok", "Quel terrain ? Ensuite vérification", False)
        assert t.step is ConversationStep.COLLECTE
        assert not t.needs_write

    def test_verification_to_proposition_needs_config(self):
        assert next_step("verification", "ok", "Voilà.", True).step is ConversationStep.PROPOSITION
        assert next_step("verification", "ok", "Encore une question.", False).step is ConversationStep.VERIFICATION

    def test_proposition_to_test_on_feedback_invite(self):
        t = next_step("proposition", "merci", "Dis-moi comment ça se passe après ton essai !", False)
        assert t.step is ConversationStep.TEST
        assert t.changed

    def test_proposition_stays_without_invite(self):
        assert next_step("proposition", "merci", "Autre chose ?", True).step is ConversationStep.PROPOSITION

    @pytest.mark.parametrize("has_config", [True, False])
    def test_test_step_is_terminal(self, has_config):
        t = next_step("test", "la fourche plonge", "Vérifions. Dis-moi comment ça se passe", has_config)
        assert t.step is ConversationStep.TEST
        assert not t.needs_write

    @pytest.mark.parametrize("text,mode", [
        ("Réglage DIRECT stp", QUICK_MODE),
        ("mode complet", STEP_BY_STEP_MODE),
        ("on fait ça pas-à-pas", STEP_BY_STEP_MODE),
        ("salut", None),
    ])
    def test_mode_keywords(self, text, mode):
        assert next_step("collecte", text, "Quel est ton poids ?", False).config_mode == mode

    def test_mode_ignored_outside_collecte(self):
        assert next_step("proposition", "plus rapide", "Ok.", False).config_mode is None

    def test_accepts_enum_member(self):
        assert next_step(ConversationStep.VERIFICATION, "", "", True).step is ConversationStep.PROPOSITION

    def test_unknown_step_rejected(self):
        with pytest.raises(ValueError):
            next_step("termine", "ok", "ok", False)

    def test_custom_classifier(self):
        class AlwaysFeedback(KeywordIntentClassifier):
            def invites_feedback(self, response_text):
                return True

        t = next_step("proposition", "merci", "Bonne route.", False, classifier=AlwaysFeedback())
        assert t.step is ConversationStep.TEST


class TestDescribeContext:
    def test_empty(self):
        assert describe_context() == ""

    def test_moto_and_kit(self):
        moto = {"brand": "KTM", "model": "300 EXC", "year": 2024}
        kit = {"name": "Kit Sable", "sport_type": "enduro", "fork_brand": "WP",
               "fork_compression": 12.0, "max_fork_compression": 30}
        text = describe_context(moto, kit)
        assert "Moto: KTM 300 EXC 2024" in text
        assert "Kit: Kit Sable" in text
        assert "fork_compression: 12.0 / max 30" in text
        assert "fourche WP, amortisseur ?" in text


class TestRunExchange:
    def test_records_messages_and_step(self, store, conversation_id):
        result = run_exchange(store, replying("Vérifions ton sag."), conversation_id, "je veux le mode rapide")
        assert result.response == "Vérifions ton sag."
        assert result.persisted
        assert not result.provider_failed
        conv = store.get_conversation(conversation_id)
        assert conv["step"] == "verification"
        assert conv["config_mode"] == QUICK_MODE
        assert [m["role"] for m in store.list_messages(conversation_id)] == ["user", "assistant"]

    def test_config_stored_on_assistant_message(self, store, conversation_id):
        config = {"name": "Config sable", "fork_compression": 10}
        result = run_exchange(store, replying("Voici les réglages.", config), conversation_id, "go")
        assert result.config == config
        assert result.transition.step is ConversationStep.PROPOSITION
        assistant = store.list_messages(conversation_id)[-1]
        assert assistant["metadata"] == {"config": config}
        assert store.get_conversation(conversation_id)["step"] == "proposition"

    def test_empty_config_is_not_a_proposal(self, store, conversation_id):
        result = run_exchange(store, replying("Voilà", {}), conversation_id, "salut")
        assert result.config is None
        assert result.transition.step is ConversationStep.COLLECTE
        assert store.list_messages(conversation_id)[-1]["metadata"] is None
        assert store.get_conversation(conversation_id)["step"] == "collecte"

    def test_unknown_config_keys_do_not_advance(self, store, conversation_id):
        def generate(user_text, history, context):
            response, config = extract_config('Voilà <config>{"forkSpring": 4.6}</config>')
            return {"response": response, "config": config}

        result = run_exchange(store, generate, conversation_id, "salut")
        assert result.config is None
        assert store.get_conversation(conversation_id)["step"] == "collecte"

    def test_history_excludes_current_message(self, store, conversation_id):
        store.add_message(conversation_id, "assistant", "Salut !")
        generate = replying("Quel est ton poids ?")
        run_exchange(store, generate, conversation_id, "bonjour", context="Moto: KTM")
        user_text, history, context = generate.calls[0]
        assert user_text == "bonjour"
        assert [m["content"] for m in history] == ["Salut !"]
        assert context == "Moto: KTM"

    def test_no_write_when_nothing_changes(self, store, conversation_id, monkeypatch):
        calls = []
        monkeypatch.setattr(store, "update_step", lambda *a, **kw: calls.append(a))
        result = run_exchange(store, replying("Quel est ton poids ?"), conversation_id, "salut")
        assert result.transition.step is ConversationStep.COLLECTE
        assert calls == []

    @pytest.mark.parametrize("error", [ChatProviderError("quota"), requests.ConnectionError("down")])
    def test_provider_failure_uses_fallback(self, store, conversation_id, error):
        def generate(user_text, history, context):
            raise error

        result = run_exchange(store, generate, conversation_id, "mode rapide")
        assert result.provider_failed
        assert result.response == CHAT_FALLBACK_REPLY
        assert result.transition is None
        assert store.get_conversation(conversation_id)["step"] == "collecte"
        assert store.get_conversation(conversation_id)["config_mode"] is None
        assert [m["content"] for m in store.list_messages(conversation_id)] == ["mode rapide", CHAT_FALLBACK_REPLY]

    def test_error_payload_uses_fallback(self, store, conversation_id):
        result = run_exchange(store, lambda *a: {"error": "boom"}, conversation_id, "salut")
        assert result.provider_failed
        assert result.response == CHAT_FALLBACK_REPLY

    def test_step_write_failure_is_soft(self, store, conversation_id, monkeypatch):
        def failing(*args, **kwargs):
            raise StoreError("disk full")

        monkeypatch.setattr(store, "update_step", failing)
        result = run_exchange(store, replying("Réglages :", {"name": "x"}), conversation_id, "go")
        assert not result.persisted
        assert result.transition.step is ConversationStep.PROPOSITION
        assert result.response == "Réglages :"
        assert store.get_conversation(conversation_id)["step"] == "collecte"

    def test_unknown_conversation(self, store):
        with pytest.raises(RecordNotFound):
            run_exchange(store, replying("x"), "missing", "salut")
