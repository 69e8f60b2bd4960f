"""Tests for config block parsing, prompt building and the HTTP chat client."""

from unittest.mock import MagicMock, patch

import pytest

from chat_client import ChatClient, ChatProviderError, build_prompt, extract_config, snake_case


def provider_reply(text, ok=True, status=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status
    response.text = "error body"
    response.json.return_value = {"outputs": [{"data": {"text": {"raw": text}}}]}
    return response


class TestExtractConfig:
    @pytest.mark.parametrize("key,expected", [
        ("shockCompressionLow", "shock_compression_low"),
        ("tirePressureFront", "tire_pressure_front"),
        ("name", "name"),
    ])
    def test_snake_case(self, key, expected):
        assert snake_case(key) == expected

    def test_block_parsed_and_stripped(self):
        text = 'Voici tes réglages.\n<config>{"name": "Sable", "forkCompression": 10, "shockCompressionHigh": 1.5, "foo": 1}</config>'
        cleaned, config = extract_config(text)
        assert cleaned == "Voici tes réglages."
        assert config == {"name": "Sable", "fork_compression": 10, "shock_compression_high": 1.5}

    def test_no_block(self):
        assert extract_config("  Quel est ton poids ?  ") == ("Quel est ton poids ?", None)

    def test_block_without_known_settings(self):
        cleaned, config = extract_config('Voilà <config>{"forkSpring": 4.6}</config>')
        assert config is None
        assert cleaned == "Voilà"

    def test_malformed_block_ignored(self):
        cleaned, config = extract_config("Réglages :<config>{forkCompression: 10</config>")
        assert config is None
        assert cleaned == "Réglages :"


class TestBuildPrompt:
    def test_without_profile(self):
        prompt = build_prompt("salut", [])
        assert "AUCUN PROFIL PILOTE" in prompt
        assert prompt.endswith("Utilisateur: salut\n\nMXTune:")

    def test_partial_profile_lists_missing_fields(self):
        prompt = build_prompt("salut", [], profile={"weight": 80, "level": "expert"})
        assert "PROFIL PILOTE : Poids équipé: 80kg, Niveau: expert" in prompt
        assert "INFORMATIONS MANQUANTES DANS LE PROFIL : style de pilotage, objectif" in prompt

    def test_complete_profile(self):
        profile = {"weight": 80, "level": "expert", "style": "agressif", "objective": "performance"}
        assert "Profil pilote complet." in build_prompt("salut", [], profile=profile)

    def test_history_and_context(self):
        history = [{"role": "assistant", "content": "Salut !"}, {"role": "user", "content": "Bonjour"}]
        prompt = build_prompt("mode rapide", history, context="Moto: KTM 300 EXC 2024")
        assert "CONTEXTE MOTO : Moto: KTM 300 EXC 2024" in prompt
        assert "MXTune: Salut !\nUtilisateur: Bonjour" in prompt


class TestChatClient:
    @patch("chat_client.requests.post")
    def test_generate(self, mock_post):
        mock_post.return_value = provider_reply('Go !<config>{"forkRebound": 12}</config>')
        client = ChatClient("https://chat.example/outputs", "secret", model="gpt-4o", timeout=5)

        reply = client.generate("salut", [], "Moto: KTM")

        assert reply == {"response": "Go !", "config": {"fork_rebound": 12}}
        args, kwargs = mock_post.call_args
        assert args[0] == "https://chat.example/outputs"
        assert kwargs["headers"]["Authorization"] == "Key secret"
        assert kwargs["json"]["model"] == "gpt-4o"
        assert "Moto: KTM" in kwargs["json"]["inputs"][0]["data"]["text"]["raw"]
        assert kwargs["timeout"] == 5

    @patch("chat_client.requests.post")
    def test_callable(self, mock_post):
        mock_post.return_value = provider_reply("Quel terrain ?")
        assert ChatClient("https://chat.example", "k")("salut", [])["response"] == "Quel terrain ?"

    @patch("chat_client.requests.post")
    def test_http_error(self, mock_post):
        mock_post.return_value = provider_reply("", ok=False, status=429)
        with pytest.raises(ChatProviderError):
            ChatClient("https://chat.example", "k").generate("salut", [])

    @patch("chat_client.requests.post")
    def test_missing_output(self, mock_post):
        response = provider_reply("")
        response.json.return_value = {"outputs": []}
        mock_post.return_value = response
        with pytest.raises(ChatProviderError):
            ChatClient("https://chat.example", "k").generate("salut", [])
