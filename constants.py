# constants.py
import os

# --- App Configuration ---
PAGE_TITLE = "MXTune - Réglages Suspension"
PAGE_ICON = "🏍️"
LOG_LEVEL = os.environ.get("MXTUNE_LOG_LEVEL", "INFO").upper()
DATABASE_URL = os.environ.get("MXTUNE_DATABASE_URL", "sqlite:///mxtune.db")
CHAT_ENDPOINT = os.environ.get("MXTUNE_CHAT_ENDPOINT", "https://api.clarifai.com/v2/models/gpt-4o/outputs")
CHAT_API_KEY = os.environ.get("MXTUNE_CHAT_API_KEY", "")
CHAT_MODEL = os.environ.get("MXTUNE_CHAT_MODEL", "gpt-4o")
CHAT_TIMEOUT_S = 60
DEFAULT_USER_ID = os.environ.get("MXTUNE_USER_ID", "pilote")

# --- Balance & Conversion ---
BALANCE_THRESHOLD = 10
FRONT_HEAVY, BALANCED, REAR_HEAVY = "FRONT_HEAVY", "BALANCED", "REAR_HEAVY"
EXTREME_LOW_PCT, EXTREME_HIGH_PCT = 20, 80

# --- Suspension Parameters ---
SETTING_FIELDS = ["fork_compression", "fork_rebound", "shock_compression_low", "shock_compression_high", "shock_rebound"]
SETTING_LABELS = {
    "fork_compression": "Fourche Compression",
    "fork_rebound": "Fourche Détente",
    "shock_compression_low": "Amortisseur Compression BV",
    "shock_compression_high": "Amortisseur Compression HV",
    "shock_rebound": "Amortisseur Détente",
}

# --- Click Ranges by Brand ---
DEFAULT_CLICK_RANGES = {
    "WP": {"fork_compression": 30, "fork_rebound": 30, "shock_compression_low": 30, "shock_compression_high": 20, "shock_rebound": 30},
    "KYB": {"fork_compression": 20, "fork_rebound": 20, "shock_compression_low": 20, "shock_compression_high": 15, "shock_rebound": 20},
    "Showa": {"fork_compression": 20, "fork_rebound": 20, "shock_compression_low": 20, "shock_compression_high": 15, "shock_rebound": 20},
    "Ohlins": {"fork_compression": 40, "fork_rebound": 40, "shock_compression_low": 40, "shock_compression_high": 25, "shock_rebound": 40},
    "Sachs": {"fork_compression": 25, "fork_rebound": 25, "shock_compression_low": 25, "shock_compression_high": 18, "shock_rebound": 25},
    "default": {"fork_compression": 25, "fork_rebound": 25, "shock_compression_low": 25, "shock_compression_high": 20, "shock_rebound": 25},
}
SUSPENSION_BRANDS = [b for b in DEFAULT_CLICK_RANGES if b != "default"]

# --- Adjuster Directions ---
# Clockwise closes the adjuster (firmer), counter-clockwise opens it (softer)
DIRECTION_LABELS = {
    "CW": {"short": "↻", "long": "Horaire (fermer)", "action": "Fermer", "verb": "tighten"},
    "CCW": {"short": "↺", "long": "Anti-horaire (ouvrir)", "action": "Ouvrir", "verb": "loosen"},
}

POSITION_LEVELS = [(20, "Très souple"), (40, "Souple"), (60, "Neutre"), (80, "Ferme")]
POSITION_MAX_LABEL = "Très ferme"

# --- Conversation Steps ---
STEP_LABELS = {
    "collecte": "Collecte des données",
    "verification": "Vérification",
    "proposition": "Proposition de réglages",
    "test": "Test terrain",
}
MODE_KEYWORDS = ["rapide", "direct", "pas-à-pas", "complet"]
QUICK_MODE_KEYWORDS = ["rapide", "direct"]
TERRAIN_QUESTION_KEYWORDS = ["type de terrain", "quel terrain"]
VERIFICATION_KEYWORDS = ["vérifions", "vérification"]
FEEDBACK_INVITE_KEYWORDS = ["après ton essai", "dis-moi comment ça se passe"]

CHAT_FALLBACK_REPLY = "Désolé, je rencontre un problème technique. Peux-tu réessayer dans un instant ?"
WELCOME_MESSAGE = "Salut ! Je suis Harry, ton expert suspension. 🏍️\n\n**Quel est ton besoin aujourd'hui ?**"

# --- Intake Keywords ---
SPORT_KEYWORDS = {
    "enduro": ["enduro", "hard enduro"],
    "motocross": ["motocross", "cross", "mx"],
    "supermoto": ["supermoto"],
    "trail": ["trail", "balade"],
    "rally": ["rally", "rallye"],
}
TERRAIN_KEYWORDS = {
    "sable": ["sable", "sablonneux", "dune"],
    "boue": ["boue", "boueux", "humide"],
    "dur": ["dur", "sec", "compact"],
    "rocailleux": ["rocailleux", "cailloux", "pierres", "rochers"],
    "neige": ["neige", "enneige", "snow", "glace", "verglas"],
    "mixte": ["mixte", "variable"],
}
SPORT_TYPES = list(SPORT_KEYWORDS.keys())
TERRAIN_TYPES = list(TERRAIN_KEYWORDS.keys())
RIDER_LEVELS = ["debutant", "intermediaire", "confirme", "expert"]
RIDER_STYLES = ["neutre", "agressif", "souple"]
RIDER_OBJECTIVES = ["confort", "performance", "mixte"]

DEFAULT_DIRECT_PROFILE = {"rider_weight": 75, "rider_level": "intermediaire", "rider_style": "neutre", "rider_objective": "mixte"}

# --- Deterministic Config Tables ---
FALLBACK_CLICKS = 12
FALLBACK_HV_TURNS = 1.5
FALLBACK_MAX_CLICKS = 25
FALLBACK_MAX_HV_TURNS = 4

TERRAIN_ADJUSTMENTS = {
    "sable": {"fork_compression": -2, "fork_rebound": -1, "shock_compression_low": -2, "shock_compression_high": -0.5, "shock_rebound": -1},
    "boue": {"fork_compression": -1, "fork_rebound": 0, "shock_compression_low": -1, "shock_compression_high": -0.5, "shock_rebound": 0},
    "dur": {"fork_compression": 1, "fork_rebound": 1, "shock_compression_low": 1, "shock_compression_high": 0.5, "shock_rebound": 1},
    "rocailleux": {"fork_compression": -1, "fork_rebound": 1, "shock_compression_low": -1, "shock_compression_high": 0, "shock_rebound": 1},
    "neige": {"fork_compression": -2, "fork_rebound": -1, "shock_compression_low": -2, "shock_compression_high": -0.5, "shock_rebound": -1},
    "mixte": {},
}
TIRE_PRESSURES = {"sable": (0.8, 0.75), "boue": (0.85, 0.8), "neige": (0.75, 0.7)}
DEFAULT_TIRE_PRESSURES = (0.95, 0.9)
TERRAIN_CONDITIONS = {"boue": "boueux", "neige": "neigeux"}
HEAVY_RIDER_KG, LIGHT_RIDER_KG = 95, 65

# --- Config Record Fields ---
# Keys kept from an assistant <config> block, after camelCase -> snake_case
CONFIG_FIELDS = [
    "name", "description", "sport_type", "terrain_type",
    "fork_compression", "fork_rebound", "fork_preload",
    "shock_compression_low", "shock_compression_high", "shock_rebound", "shock_preload",
    "static_sag", "dynamic_sag", "tire_pressure_front", "tire_pressure_rear", "conditions",
]
VISIBILITY_OPTIONS = ["private", "public", "link"]
# Fields adjustable one at a time from a saved config (+/- buttons)
CONFIG_ADJUSTABLE_FIELDS = SETTING_FIELDS + ["static_sag", "dynamic_sag", "tire_pressure_front", "tire_pressure_rear"]

# --- Config Feedback ---
SATISFACTION_MIN, SATISFACTION_MAX = 1, 10
