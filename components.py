# components.py
import streamlit as st
from constants import (
    SETTING_FIELDS, SETTING_LABELS, STEP_LABELS, FRONT_HEAVY, REAR_HEAVY, DIRECTION_LABELS,
    CONFIG_ADJUSTABLE_FIELDS, VISIBILITY_OPTIONS, SATISFACTION_MIN, SATISFACTION_MAX,
)
from logic import (
    SuspensionSettings, SuspensionRanges, balance_recommendations, clicks_to_percentage,
    compare_setups, get_default_click_range, position_description,
)

BALANCE_TEXT = {FRONT_HEAVY: "Avant plus ferme", REAR_HEAVY: "Arrière plus ferme"}
EXTRA_LABELS = {
    "static_sag": "Sag statique (mm)", "dynamic_sag": "Sag dynamique (mm)",
    "tire_pressure_front": "Pression AV (bar)", "tire_pressure_rear": "Pression AR (bar)",
}
FIELD_STEPS = {"shock_compression_high": 0.5, "tire_pressure_front": 0.05, "tire_pressure_rear": 0.05}


def reset_form_callback():
    """Clears all session state variables."""
    for key in list(st.session_state.keys()):
        del st.session_state[key]


def sync_ranges_from_brand():
    """Resets the max-click inputs to the stock range of the selected brands."""
    fork_range = get_default_click_range(st.session_state.get("fork_brand_select"))
    shock_range = get_default_click_range(st.session_state.get("shock_brand_select"))
    for field in SETTING_FIELDS:
        source = fork_range if field.startswith("fork") else shock_range
        st.session_state[f"max_{field}"] = source[field]


def load_kit_into_state(kit):
    """Copies a stored kit's ranges and current clicks into the widgets."""
    ranges = SuspensionRanges.from_record(kit)
    settings = SuspensionSettings.from_record(kit)
    for field in SETTING_FIELDS:
        st.session_state[f"max_{field}"] = getattr(ranges, field)
        # Widgets reject values above their max
        st.session_state[f"cur_{field}"] = min(getattr(settings, field), getattr(ranges, field))
    st.session_state.loaded_kit_id = kit["id"]


def range_inputs():
    """Renders the max-click inputs and returns a clamped SuspensionRanges."""
    cols = st.columns(len(SETTING_FIELDS))
    values = {}
    for col, field in zip(cols, SETTING_FIELDS):
        with col:
            if f"max_{field}" not in st.session_state:
                st.session_state[f"max_{field}"] = get_default_click_range(None)[field]
            values[field] = st.number_input(f"Max {SETTING_LABELS[field]}", 1, 60, key=f"max_{field}")
    return SuspensionRanges(**values)


def clicker_inputs(ranges, prefix="cur"):
    """Renders one slider per adjuster and returns the SuspensionSettings."""
    values = {}
    for field in SETTING_FIELDS:
        max_clicks = getattr(ranges, field)
        key = f"{prefix}_{field}"
        if key not in st.session_state:
            st.session_state[key] = max_clicks // 2
        elif st.session_state[key] > max_clicks:
            st.session_state[key] = max_clicks
        value = st.slider(f"{SETTING_LABELS[field]} (clics depuis fermé)", 0, max_clicks, key=key)
        pct = clicks_to_percentage(value, max_clicks)
        st.caption(f"{pct}% - {position_description(pct)}")
        values[field] = value
    return SuspensionSettings(**values)


def balance_block(balance):
    """Renders the front/rear comparison and its recommendations."""
    st.subheader("Analyse d'équilibre AV/AR")
    col_c, col_r = st.columns(2)
    with col_c:
        st.metric("Compression AV / AR", f"{balance.front_compression}% / {balance.rear_compression}%")
        st.markdown(f"**{BALANCE_TEXT.get(balance.compression_balance, 'Équilibré')}**")
    with col_r:
        st.metric("Détente AV / AR", f"{balance.front_rebound}% / {balance.rear_rebound}%")
        st.markdown(f"**{BALANCE_TEXT.get(balance.rebound_balance, 'Équilibré')}**")

    recs = balance_recommendations(balance)
    if balance.is_balanced and not recs:
        st.success("Réglage équilibré entre l'avant et l'arrière.")
    for rec in recs:
        st.warning(rec)


def adjustment_table(current, target, ranges):
    """Displays the clicks and direction needed to reach a target setup."""
    st.subheader("Ajustements pour atteindre la cible")
    df = compare_setups(current, target, ranges)
    st.dataframe(df, hide_index=True)
    st.caption(f"{DIRECTION_LABELS['CW']['short']} {DIRECTION_LABELS['CW']['long']} = plus ferme | "
               f"{DIRECTION_LABELS['CCW']['short']} {DIRECTION_LABELS['CCW']['long']} = plus souple")


def chat_steps_block(step):
    labels = list(STEP_LABELS.values())
    index = list(STEP_LABELS.keys()).index(step) if step in STEP_LABELS else 0
    st.progress((index + 1) / len(labels), text=f"Étape {index + 1}/{len(labels)} : {labels[index]}")


def _fmt(value):
    return "-" if value is None else str(value)


def config_summary(config):
    """Renders a proposed or saved config as a compact table."""
    rows = [{"Réglage": SETTING_LABELS[f], "Valeur": _fmt(config.get(f))} for f in SETTING_FIELDS]
    rows += [
        {"Réglage": "Sag statique / dynamique (mm)", "Valeur": f"{_fmt(config.get('static_sag'))} / {_fmt(config.get('dynamic_sag'))}"},
        {"Réglage": "Pression AV / AR (bar)", "Valeur": f"{_fmt(config.get('tire_pressure_front'))} / {_fmt(config.get('tire_pressure_rear'))}"},
    ]
    st.markdown(f"**{config.get('name') or 'Configuration'}**")
    if config.get("description"):
        st.caption(config["description"])
    st.dataframe(rows, hide_index=True)


def config_editor(config):
    """Form for a saved config. Returns the changed fields once submitted, else None."""
    with st.form(f"edit_config_{config['id']}"):
        name = st.text_input("Nom", value=config["name"])
        visibility = st.radio("Visibilité", VISIBILITY_OPTIONS, index=VISIBILITY_OPTIONS.index(config["visibility"]), horizontal=True)
        cols = st.columns(2)
        values = {}
        for i, field in enumerate(CONFIG_ADJUSTABLE_FIELDS):
            with cols[i % 2]:
                label = SETTING_LABELS.get(field, EXTRA_LABELS.get(field, field))
                values[field] = st.number_input(label, 0.0, 400.0, float(config[field] or 0), step=FIELD_STEPS.get(field, 1.0))
        if not st.form_submit_button("Enregistrer"):
            return None
    changes = {field: value for field, value in values.items() if value != (config[field] or 0)}
    if name.strip() and name != config["name"]:
        changes["name"] = name.strip()
    if visibility != config["visibility"]:
        changes["visibility"] = visibility
    return changes


def feedback_form(config_id):
    """Satisfaction slider and note. Returns (satisfaction, note) once submitted, else None."""
    with st.form(f"feedback_{config_id}"):
        satisfaction = st.slider("Satisfaction", SATISFACTION_MIN, SATISFACTION_MAX, 7)
        note = st.text_area("Remarques (optionnel)")
        if not st.form_submit_button("Envoyer mon avis"):
            return None
    return satisfaction, note
