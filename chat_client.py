# chat_client.py
import json
import logging
import re

import requests

from constants import CONFIG_FIELDS

logger = logging.getLogger(__name__)

CONFIG_BLOCK_RE = re.compile(r"<config>([\s\S]*?)</config>")
CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

SYSTEM_PROMPT = """Tu es "Harry", un expert professionnel en réglage de suspensions moto tout-terrain (motocross, enduro, rally, hard enduro).
Tu donnes des recommandations concrètes, testables et sécurisées, en français, en tutoyant le pilote.

Tu appliques 4 étapes dans l'ordre, sans jamais brûler les étapes :
1. COLLECTE : demande uniquement les données manquantes (moto, discipline, suspensions, poids équipé, niveau, terrain dominant). Une question à la fois.
2. VÉRIFICATION : annonce "Vérifions la cohérence" puis contrôle ressorts/poids, équilibre avant/arrière et sag. Si un problème structurel apparaît, explique-le et ne donne pas de réglage extrême.
3. PROPOSITION : donne les réglages "depuis fermé" sans jamais dépasser les plages max du kit.
4. TEST : explique comment tester (15-30 minutes, terrain représentatif) et termine par "Dis-moi comment ça se passe après ton essai !".

En mode réglage direct, pose toujours la question "Sur quel type de terrain vas-tu rouler ?" avant de proposer des réglages.

Quand tu proposes une configuration, ajoute OBLIGATOIREMENT à la fin de ta réponse un bloc :
<config>
{"name": "...", "description": "...", "sportType": "enduro", "terrainType": "mixte",
 "forkCompression": 14, "forkRebound": 15, "forkPreload": "standard",
 "shockCompressionLow": 15, "shockCompressionHigh": 2, "shockRebound": 15, "shockPreload": "standard",
 "staticSag": 35, "dynamicSag": 100, "tirePressureFront": 0.9, "tirePressureRear": 0.8, "conditions": "sec"}
</config>"""

PROFILE_FIELDS = [
    ("weight", "Poids équipé", "poids équipé", "kg"),
    ("level", "Niveau", "niveau", ""),
    ("style", "Style", "style de pilotage", ""),
    ("objective", "Objectif", "objectif", ""),
]


class ChatProviderError(Exception):
    """Raised when the completion provider returns an error or an unusable payload."""


def snake_case(key):
    return CAMEL_RE.sub("_", key).lower()


def extract_config(text):
    """Splits a reply into cleaned text and the settings object it carries, if any."""
    config = None
    match = CONFIG_BLOCK_RE.search(text)
    if match:
        try:
            raw = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed <config> block")
        else:
            if isinstance(raw, dict):
                converted = {snake_case(k): v for k, v in raw.items()}
                config = {k: v for k, v in converted.items() if k in CONFIG_FIELDS} or None
                if config is None:
                    logger.warning("Ignoring <config> block without known settings")
    cleaned = CONFIG_BLOCK_RE.sub("", text).strip()
    return cleaned, config


def build_prompt(user_text, history, context=None, profile=None):
    parts = [SYSTEM_PROMPT, ""]
    if context:
        parts.append(f"CONTEXTE MOTO : {context}\n")

    if profile:
        known, missing = [], []
        for key, label, missing_label, unit in PROFILE_FIELDS:
            if profile.get(key):
                known.append(f"{label}: {profile[key]}{unit}")
            else:
                missing.append(missing_label)
        if known:
            parts.append(f"PROFIL PILOTE : {', '.join(known)}")
        if missing:
            parts.append(f"INFORMATIONS MANQUANTES DANS LE PROFIL : {', '.join(missing)}. "
                         "Tu DOIS inviter l'utilisateur à compléter son profil avant de proposer une config.\n")
        else:
            parts.append("Profil pilote complet.\n")
    else:
        parts.append("AUCUN PROFIL PILOTE. Tu DOIS inviter l'utilisateur à remplir son profil "
                     "(poids, niveau, style, objectif) avant de proposer une config.\n")

    if history:
        parts.append("Historique de la conversation :")
        for msg in history:
            role = "Utilisateur" if msg.get("role") == "user" else "MXTune"
            parts.append(f"{role}: {msg.get('content', '')}")
        parts.append("")

    parts.append(f"Utilisateur: {user_text}\n\nMXTune:")
    return "\n".join(parts)


class ChatClient:
    """Sends one prompt to a text completion endpoint and parses the reply."""

    def __init__(self, endpoint, api_key, model="gpt-4o", timeout=60, profile=None):
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.profile = profile

    def generate(self, user_text, history, context=None):
        prompt = build_prompt(user_text, history, context, self.profile)
        r = requests.post(
            self.endpoint,
            headers={"Authorization": f"Key {self.api_key}", "Content-Type": "application/json"},
            json={"model": self.model, "inputs": [{"data": {"text": {"raw": prompt}}}]},
            timeout=self.timeout,
        )
        if not r.ok:
            logger.error("Chat provider returned %s: %s", r.status_code, r.text[:500])
            raise ChatProviderError(f"chat provider error: {r.status_code}")

        data = r.json()
        try:
            text = data["outputs"][0]["data"]["text"]["raw"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ChatProviderError("chat provider returned no text output") from exc

        response, config = extract_config(text or "")
        return {"response": response, "config": config}

    __call__ = generate
