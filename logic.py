# logic.py
import math
import unicodedata
from dataclasses import dataclass, replace

import pandas as pd
from fpdf import FPDF

from constants import (
    BALANCE_THRESHOLD, FRONT_HEAVY, BALANCED, REAR_HEAVY, EXTREME_LOW_PCT, EXTREME_HIGH_PCT,
    SETTING_FIELDS, SETTING_LABELS, DEFAULT_CLICK_RANGES, DIRECTION_LABELS,
    POSITION_LEVELS, POSITION_MAX_LABEL, FALLBACK_CLICKS, FALLBACK_HV_TURNS,
    FALLBACK_MAX_CLICKS, FALLBACK_MAX_HV_TURNS, TERRAIN_ADJUSTMENTS, TIRE_PRESSURES,
    DEFAULT_TIRE_PRESSURES, TERRAIN_CONDITIONS, HEAVY_RIDER_KG, LIGHT_RIDER_KG,
)

FORK_FIELDS = ("fork_compression", "fork_rebound")


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def _is_missing(value):
    return value is None or (isinstance(value, float) and math.isnan(value))


def _clamp(value, low, high):
    return max(low, min(high, value))


def resolve_setting(override, base, default):
    """Returns the first present value of override -> base -> default."""
    if not _is_missing(override):
        return override
    if not _is_missing(base):
        return base
    return default


def normalize_text(value):
    """Lowercases and strips accents so keyword checks ignore diacritics."""
    decomposed = unicodedata.normalize("NFD", str(value).lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def find_by_keywords(text, keyword_map):
    """Returns the first key whose keywords appear in the text, or None."""
    normalized = normalize_text(text)
    for key, keywords in keyword_map.items():
        if any(normalize_text(k) in normalized for k in keywords):
            return key
    return None


def get_default_click_range(brand):
    """Looks up the stock click range for a suspension brand."""
    if brand:
        wanted = normalize_text(brand).strip()
        for name, click_range in DEFAULT_CLICK_RANGES.items():
            if normalize_text(name) == wanted:
                return click_range
    return DEFAULT_CLICK_RANGES["default"]


@dataclass(frozen=True)
class SuspensionSettings:
    fork_compression: int = 0
    fork_rebound: int = 0
    shock_compression_low: int = 0
    shock_compression_high: int = 0
    shock_rebound: int = 0

    @classmethod
    def from_record(cls, record):
        """Current kit values, falling back to the kit base values, then to 0."""
        values = {}
        for field in SETTING_FIELDS:
            raw = resolve_setting(record.get(field), record.get(f"base_{field}"), 0)
            values[field] = _round_half_up(float(raw))
        return cls(**values)

    def with_value(self, field, value):
        return replace(self, **{field: int(value)})

    def clamped_to(self, ranges):
        """Caps each value to 0..max of the given ranges."""
        return SuspensionSettings(**{f: _clamp(getattr(self, f), 0, getattr(ranges, f)) for f in SETTING_FIELDS})

    def as_dict(self):
        return {field: getattr(self, field) for field in SETTING_FIELDS}


@dataclass(frozen=True)
class SuspensionRanges:
    fork_compression: int = FALLBACK_MAX_CLICKS
    fork_rebound: int = FALLBACK_MAX_CLICKS
    shock_compression_low: int = FALLBACK_MAX_CLICKS
    shock_compression_high: int = FALLBACK_MAX_CLICKS
    shock_rebound: int = FALLBACK_MAX_CLICKS

    def __post_init__(self):
        # Floor of 1 keeps every percentage conversion defined
        for field in SETTING_FIELDS:
            object.__setattr__(self, field, max(1, int(getattr(self, field))))

    @classmethod
    def from_record(cls, record=None):
        """Builds ranges from a kit's max_* columns, then the brand defaults."""
        record = record or {}
        fork_defaults = get_default_click_range(record.get("fork_brand"))
        shock_defaults = get_default_click_range(record.get("shock_brand"))
        values = {}
        for field in SETTING_FIELDS:
            defaults = fork_defaults if field in FORK_FIELDS else shock_defaults
            values[field] = resolve_setting(record.get(f"max_{field}"), None, defaults[field])
        return cls(**values)

    def as_dict(self):
        return {field: getattr(self, field) for field in SETTING_FIELDS}


@dataclass(frozen=True)
class Balance:
    front_compression: int
    rear_compression: int
    front_rebound: int
    rear_rebound: int
    compression_balance: str
    rebound_balance: str
    overall_balance: str

    @property
    def is_balanced(self):
        return self.compression_balance == BALANCED and self.rebound_balance == BALANCED


@dataclass(frozen=True)
class Adjustment:
    clicks: int
    direction: str
    from_percentage: int
    to_percentage: int

    @property
    def label(self):
        return DIRECTION_LABELS[self.direction]["long"]


def clicks_to_percentage(clicks, max_clicks):
    """Converts a click count to a firmness percentage (0 = soft, 100 = firm)."""
    if max_clicks <= 0:
        return 0
    return _round_half_up(clicks / max_clicks * 100)


def percentage_to_clicks(percentage, max_clicks):
    if max_clicks <= 0:
        return 0
    return _round_half_up(percentage / 100 * max_clicks)


def classify_delta(delta, threshold=BALANCE_THRESHOLD):
    if abs(delta) <= threshold:
        return BALANCED
    return FRONT_HEAVY if delta > 0 else REAR_HEAVY


def calculate_balance(fork_compression, fork_rebound, shock_compression_low, shock_rebound,
                      max_fork_compression, max_fork_rebound, max_shock_compression_low, max_shock_rebound,
                      shock_compression_high=None, max_shock_compression_high=None):
    """Compares front and rear firmness for compression and rebound.

    When the high-speed shock compression pair is given, the rear compression
    percentage is the mean of the low- and high-speed percentages.
    """
    front_compression = clicks_to_percentage(fork_compression, max_fork_compression)
    front_rebound = clicks_to_percentage(fork_rebound, max_fork_rebound)

    rear_compression = clicks_to_percentage(shock_compression_low, max_shock_compression_low)
    if shock_compression_high is not None and max_shock_compression_high is not None:
        high_pct = clicks_to_percentage(shock_compression_high, max_shock_compression_high)
        rear_compression = _round_half_up((rear_compression + high_pct) / 2)
    rear_rebound = clicks_to_percentage(shock_rebound, max_shock_rebound)

    compression_delta = front_compression - rear_compression
    rebound_delta = front_rebound - rear_rebound

    return Balance(
        front_compression=front_compression,
        rear_compression=rear_compression,
        front_rebound=front_rebound,
        rear_rebound=rear_rebound,
        compression_balance=classify_delta(compression_delta),
        rebound_balance=classify_delta(rebound_delta),
        overall_balance=classify_delta((compression_delta + rebound_delta) / 2),
    )


def balance_from_settings(settings, ranges):
    return calculate_balance(
        settings.fork_compression, settings.fork_rebound,
        settings.shock_compression_low, settings.shock_rebound,
        ranges.fork_compression, ranges.fork_rebound,
        ranges.shock_compression_low, ranges.shock_rebound,
        settings.shock_compression_high, ranges.shock_compression_high,
    )


def balance_recommendations(balance):
    """Plain-language advice for an unbalanced or extreme setup."""
    recs = []
    if balance.compression_balance == FRONT_HEAVY:
        recs.append("La fourche est plus ferme que l'amortisseur. Essayez d'ouvrir la compression avant ou de fermer l'arrière.")
    elif balance.compression_balance == REAR_HEAVY:
        recs.append("L'amortisseur est plus ferme que la fourche. Essayez d'ouvrir la compression arrière ou de fermer l'avant.")

    if balance.rebound_balance == FRONT_HEAVY:
        recs.append("La détente avant est plus lente que l'arrière. Cela peut causer un déséquilibre en sortie de virage.")
    elif balance.rebound_balance == REAR_HEAVY:
        recs.append("La détente arrière est plus lente que l'avant. Cela peut affecter la stabilité au freinage.")

    for label, pct in (("Compression fourche", balance.front_compression), ("Compression amortisseur", balance.rear_compression)):
        if pct < EXTREME_LOW_PCT or pct > EXTREME_HIGH_PCT:
            recs.append(f"{label} à {pct}% - position {'très souple' if pct < EXTREME_LOW_PCT else 'très ferme'}.")
    return recs


def position_description(percentage):
    for upper, label in POSITION_LEVELS:
        if percentage <= upper:
            return label
    return POSITION_MAX_LABEL


def calculate_adjustment(current, target, max_clicks):
    """Clicks and turning direction needed to go from current to target."""
    diff = target - current
    return Adjustment(
        clicks=abs(diff),
        direction="CW" if diff > 0 else "CCW",
        from_percentage=clicks_to_percentage(current, max_clicks),
        to_percentage=clicks_to_percentage(target, max_clicks),
    )


def compare_setups(current, target, ranges):
    """Tabulates the per-parameter adjustments between two setups.

    Both setups are capped to ``ranges`` first, so a target read from a kit
    with wider ranges stays within 0-100%.
    """
    current, target = current.clamped_to(ranges), target.clamped_to(ranges)
    rows = []
    for field in SETTING_FIELDS:
        adj = calculate_adjustment(getattr(current, field), getattr(target, field), getattr(ranges, field))
        rows.append({
            "Réglage": SETTING_LABELS[field],
            "Actuel": getattr(current, field),
            "Cible": getattr(target, field),
            "Clics": adj.clicks,
            "Sens": adj.label if adj.clicks else "-",
            "De (%)": adj.from_percentage,
            "Vers (%)": adj.to_percentage,
        })
    return pd.DataFrame(rows)


def build_deterministic_config(intake, kit):
    """Derives a starting config from the kit baseline, terrain and rider profile."""
    sport_type = intake.get("sport_type") or "enduro"
    terrain_type = intake.get("terrain_type") or "mixte"

    values = {}
    for field in SETTING_FIELDS:
        fallback = FALLBACK_HV_TURNS if field == "shock_compression_high" else FALLBACK_CLICKS
        values[field] = float(resolve_setting(kit.get(f"base_{field}"), kit.get(field), fallback))

    for field, delta in TERRAIN_ADJUSTMENTS.get(terrain_type, {}).items():
        values[field] += delta

    weight = intake.get("rider_weight")
    if not _is_missing(weight):
        if weight >= HEAVY_RIDER_KG:
            values["fork_compression"] += 1
            values["shock_compression_low"] += 1
        elif weight <= LIGHT_RIDER_KG:
            values["fork_compression"] -= 1
            values["shock_compression_low"] -= 1

    objective = intake.get("rider_objective")
    if objective == "confort":
        values["fork_compression"] -= 1
        values["shock_compression_low"] -= 1
    elif objective == "performance":
        for field in ("fork_compression", "shock_compression_low", "fork_rebound", "shock_rebound"):
            values[field] += 1

    style = intake.get("rider_style")
    if style == "agressif":
        values["fork_compression"] += 1
        values["shock_compression_high"] += 0.5
    elif style == "souple":
        values["fork_compression"] -= 1
        values["shock_compression_low"] -= 1

    config = {
        "name": f"Config {sport_type} {terrain_type}",
        "description": f"Configuration préparée pour {sport_type} sur terrain {terrain_type}.",
        "sport_type": sport_type,
        "terrain_type": terrain_type,
    }
    for field in SETTING_FIELDS:
        if field == "shock_compression_high":
            max_value = resolve_setting(kit.get("max_shock_compression_high"), None, FALLBACK_MAX_HV_TURNS)
            config[field] = round(_clamp(round(values[field], 1), 0, max_value), 1)
        else:
            max_value = resolve_setting(kit.get(f"max_{field}"), None, FALLBACK_MAX_CLICKS)
            config[field] = int(_clamp(_round_half_up(values[field]), 0, max_value))

    is_mx = sport_type == "motocross"
    front_bar, rear_bar = TIRE_PRESSURES.get(terrain_type, DEFAULT_TIRE_PRESSURES)
    config.update({
        "fork_preload": "+2mm" if is_mx else "standard",
        "shock_preload": "+2 tours" if is_mx else "standard",
        "static_sag": 33 if is_mx else 35,
        "dynamic_sag": 102 if is_mx else 105,
        "tire_pressure_front": front_bar,
        "tire_pressure_rear": rear_bar,
        "conditions": TERRAIN_CONDITIONS.get(terrain_type, "sec"),
    })
    return config


def apply_feedback_adjustments(config, message):
    """Nudges a config by one click per symptom the rider reports."""
    text = normalize_text(message)
    updated = dict(config)

    def bump(field, step, fallback=FALLBACK_CLICKS):
        current = updated.get(field)
        updated[field] = (fallback if _is_missing(current) else current) + step

    if "plonge" in text:
        bump("fork_compression", 1)
    if "talonne" in text:
        bump("shock_compression_low", 1)
        bump("shock_compression_high", 0.5, FALLBACK_HV_TURNS)
        updated["shock_compression_high"] = round(updated["shock_compression_high"], 1)
    if "rebond" in text or "instable" in text:
        bump("shock_rebound", 1)
        bump("fork_rebound", 1)
    if "dur" in text or "tape" in text:
        bump("fork_compression", -1)
        bump("shock_compression_low", -1)
    if "mou" in text or "manque de maintien" in text:
        bump("fork_compression", 1)
        bump("shock_compression_low", 1)
    return updated


def _pdf_text(value):
    # Core PDF fonts only cover latin-1
    return str(value).encode("latin-1", "replace").decode("latin-1")


def generate_config_pdf(config, moto_label):
    """Constructs a binary PDF config sheet for download."""
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", 'B', 16)
    pdf.cell(200, 10, _pdf_text(config.get("name") or "Configuration suspension"), new_x="LMARGIN", new_y="NEXT", align="C")
    pdf.set_font("Helvetica", size=11)
    pdf.ln(10)

    # Section 1: Summary
    pdf.set_font("Helvetica", 'B', 12)
    pdf.cell(200, 10, "1. Résumé", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", size=10)
    pdf.cell(200, 8, _pdf_text(f"Moto: {moto_label}"), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(200, 8, _pdf_text(f"Discipline: {config.get('sport_type') or '-'} | Terrain: {config.get('terrain_type') or '-'}"), new_x="LMARGIN", new_y="NEXT")
    if config.get("description"):
        pdf.multi_cell(0, 6, _pdf_text(config["description"]))

    # Section 2: Clickers
    pdf.ln(5)
    pdf.set_font("Helvetica", 'B', 12)
    pdf.cell(200, 10, "2. Clickers (depuis fermé)", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", size=10)
    for field in SETTING_FIELDS:
        value = config.get(field)
        pdf.cell(200, 8, _pdf_text(f"{SETTING_LABELS[field]}: {'-' if _is_missing(value) else value}"), new_x="LMARGIN", new_y="NEXT")

    # Section 3: Sag & tyres
    pdf.ln(5)
    pdf.set_font("Helvetica", 'B', 12)
    pdf.cell(200, 10, "3. Sag & Pneus", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", size=10)
    pdf.cell(200, 8, _pdf_text(f"Sag statique: {config.get('static_sag', '-')} mm | Sag dynamique: {config.get('dynamic_sag', '-')} mm"), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(200, 8, _pdf_text(f"Pression AV: {config.get('tire_pressure_front', '-')} bar | AR: {config.get('tire_pressure_rear', '-')} bar"), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(200, 8, _pdf_text(f"Précharge fourche: {config.get('fork_preload', '-')} | amortisseur: {config.get('shock_preload', '-')}"), new_x="LMARGIN", new_y="NEXT")

    # Section 4: Disclaimer
    pdf.ln(10)
    pdf.set_font("Helvetica", 'I', 9)
    pdf.multi_cell(0, 5, "Avertissement: ces valeurs sont un point de départ. Ajustez par 1 à 2 clics après essai, et faites contrôler toute fuite ou jeu par un mécanicien.")

    return bytes(pdf.output())
