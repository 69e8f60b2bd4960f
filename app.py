import logging

import streamlit as st

from chat_client import ChatClient
from components import (
    reset_form_callback, sync_ranges_from_brand, load_kit_into_state, range_inputs, clicker_inputs,
    balance_block, adjustment_table, chat_steps_block, config_summary, config_editor, feedback_form,
)
from constants import (
    PAGE_TITLE, PAGE_ICON, LOG_LEVEL, DATABASE_URL, CHAT_ENDPOINT, CHAT_API_KEY, CHAT_MODEL, CHAT_TIMEOUT_S,
    DEFAULT_USER_ID, SUSPENSION_BRANDS, SETTING_FIELDS, SETTING_LABELS, SPORT_TYPES, TERRAIN_TYPES,
    RIDER_STYLES, RIDER_OBJECTIVES, RIDER_LEVELS, VISIBILITY_OPTIONS, WELCOME_MESSAGE, DEFAULT_DIRECT_PROFILE,
)
from conversation import ConversationStep, describe_context, run_exchange
from logic import (
    SuspensionRanges, SuspensionSettings, balance_from_settings, build_deterministic_config,
    apply_feedback_adjustments, generate_config_pdf,
)
from store import TableStore, StoreError

# ==========================================================
# 1. CONFIGURATION
# ==========================================================
st.set_page_config(page_title=PAGE_TITLE, page_icon=PAGE_ICON, layout="centered")
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("mxtune")


@st.cache_resource
def get_store():
    conn = st.connection("mxtune", type="sql", url=DATABASE_URL)
    return TableStore(conn.engine)


def moto_label(moto):
    return f"{moto['brand']} {moto['model']} ({moto['year']})"


def store_failed(message, action):
    logger.exception("Store failure while trying to %s", action)
    st.error(message)


store = get_store()

col_title, col_reset = st.columns([0.8, 0.2])
with col_title: st.title("MXTune")
with col_reset:
    if st.button("Reset", on_click=reset_form_callback, type="secondary", use_container_width=True): st.rerun()

with st.sidebar:
    user_id = st.text_input("Pilote", value=DEFAULT_USER_ID)
    page = st.radio("Navigation", ["Motos & Kits", "Clickers", "Assistant Harry", "Mes configs"])

try:
    user_motos = store.list_motos(user_id)
except StoreError:
    store_failed("Base de données indisponible.", f"load motos for {user_id}")
    st.stop()

# ==========================================================
# 2. MOTOS & KITS
# ==========================================================
if page == "Motos & Kits":
    st.header("1. Mes motos")
    for moto in user_motos:
        with st.expander(moto_label(moto)):
            for kit in store.list_kits(moto["id"]):
                col_k, col_d, col_x = st.columns([0.6, 0.2, 0.2])
                with col_k: st.markdown(f"- **{kit['name']}**{' (par défaut)' if kit['is_default'] else ''} - {kit['sport_type'] or '-'} / {kit['terrain_type'] or '-'}")
                with col_d:
                    if not kit["is_default"] and st.button("Par défaut", key=f"default_{kit['id']}"):
                        try:
                            store.set_default_kit(kit["id"])
                            st.rerun()
                        except StoreError:
                            store_failed("Impossible de changer le kit par défaut.", f"set default kit {kit['id']}")
                with col_x:
                    if st.button("Supprimer", key=f"del_kit_{kit['id']}"):
                        try:
                            store.delete_kit(kit["id"])
                            st.rerun()
                        except StoreError:
                            store_failed("Impossible de supprimer le kit.", f"delete kit {kit['id']}")

            with st.form(f"edit_moto_{moto['id']}"):
                col_e1, col_e2, col_e3 = st.columns(3)
                with col_e1: new_brand = st.text_input("Marque", value=moto["brand"])
                with col_e2: new_model = st.text_input("Modèle", value=moto["model"])
                with col_e3: new_year = st.number_input("Année", 1990, 2030, int(moto["year"]))
                notes = st.text_area("Notes suspensions", value=moto["suspension_notes"] or "")
                if st.form_submit_button("Mettre à jour"):
                    try:
                        store.update_moto(moto["id"], brand=new_brand.strip(), model=new_model.strip(),
                                          year=int(new_year), suspension_notes=notes or None)
                        st.rerun()
                    except StoreError:
                        store_failed("Impossible de modifier la moto.", f"update moto {moto['id']}")
            if st.button("Supprimer la moto et ses kits", key=f"del_moto_{moto['id']}"):
                try:
                    store.delete_moto(moto["id"])
                    st.rerun()
                except StoreError:
                    store_failed("Impossible de supprimer la moto.", f"delete moto {moto['id']}")

    with st.form("new_moto"):
        st.subheader("Ajouter une moto")
        col_m1, col_m2, col_m3 = st.columns(3)
        with col_m1: brand = st.text_input("Marque", placeholder="ex: KTM")
        with col_m2: model = st.text_input("Modèle", placeholder="ex: 300 EXC")
        with col_m3: year = st.number_input("Année", 1990, 2030, 2024)
        col_s1, col_s2 = st.columns(2)
        with col_s1: fork_brand = st.selectbox("Marque fourche", SUSPENSION_BRANDS)
        with col_s2: shock_brand = st.selectbox("Marque amortisseur", SUSPENSION_BRANDS)
        is_stock = st.checkbox("Suspensions d'origine", value=True)
        if st.form_submit_button("Créer"):
            if not brand or not model:
                st.error("Marque et modèle obligatoires.")
            else:
                try:
                    store.create_moto(user_id, brand.strip(), model.strip(), year, fork_brand=fork_brand,
                                      shock_brand=shock_brand, is_stock_suspension=is_stock)
                except StoreError:
                    store_failed("Impossible de créer la moto.", "create moto")
                else:
                    st.success("Moto créée avec son kit par défaut.")
                    st.rerun()

    if user_motos:
        st.header("2. Nouveau kit")
        target_moto = st.selectbox("Moto", user_motos, format_func=moto_label, key="kit_moto_select")
        col_b1, col_b2 = st.columns(2)
        with col_b1: st.selectbox("Marque fourche", SUSPENSION_BRANDS, key="fork_brand_select", on_change=sync_ranges_from_brand)
        with col_b2: st.selectbox("Marque amortisseur", SUSPENSION_BRANDS, key="shock_brand_select", on_change=sync_ranges_from_brand)
        kit_name = st.text_input("Nom du kit", placeholder="ex: Kit Sable GP")
        col_k1, col_k2 = st.columns(2)
        with col_k1: kit_sport = st.selectbox("Discipline", SPORT_TYPES)
        with col_k2: kit_terrain = st.selectbox("Terrain", TERRAIN_TYPES)
        st.markdown("**Plages de clics**")
        kit_ranges = range_inputs()
        st.markdown("**Réglages de base**")
        kit_base = clicker_inputs(kit_ranges, prefix="base")
        kit_default = st.checkbox("Kit par défaut de la moto")
        if st.button("Enregistrer le kit"):
            if not kit_name:
                st.error("Donne un nom au kit.")
            else:
                try:
                    store.create_kit(
                        target_moto["id"], user_id, kit_name, sport_type=kit_sport, terrain_type=kit_terrain,
                        fork_brand=st.session_state.fork_brand_select, shock_brand=st.session_state.shock_brand_select,
                        is_default=kit_default,
                        **{f"max_{k}": v for k, v in kit_ranges.as_dict().items()},
                        **{f"base_{k}": v for k, v in kit_base.as_dict().items()},
                    )
                except StoreError:
                    store_failed("Impossible d'enregistrer le kit.", "create kit")
                else:
                    st.success(f"Kit '{kit_name}' enregistré.")

# ==========================================================
# 3. CLICKERS
# ==========================================================
elif page == "Clickers":
    st.header("Clickers & équilibre")
    if not user_motos:
        st.info("Ajoute d'abord une moto.")
        st.stop()
    moto = st.selectbox("Moto", user_motos, format_func=moto_label)
    moto_kits = store.list_kits(moto["id"])
    kit = st.selectbox("Kit", moto_kits, format_func=lambda k: k["name"])
    if kit is None:
        st.info("Aucun kit pour cette moto.")
        st.stop()
    if st.session_state.get("loaded_kit_id") != kit["id"]:
        load_kit_into_state(kit)

    ranges = SuspensionRanges.from_record(kit)
    current = clicker_inputs(ranges, prefix="cur")
    balance_block(balance_from_settings(current, ranges))

    if st.button("Enregistrer ces clics sur le kit"):
        try:
            store.update_kit_settings(kit["id"], current)
            st.success("Réglages enregistrés.")
        except StoreError:
            store_failed("Impossible d'enregistrer les réglages.", f"save settings on kit {kit['id']}")

    others = [k for k in moto_kits if k["id"] != kit["id"]]
    if others:
        st.divider()
        compare_kit = st.selectbox("Comparer avec", others, format_func=lambda k: k["name"])
        adjustment_table(current, SuspensionSettings.from_record(compare_kit), ranges)

# ==========================================================
# 4. ASSISTANT
# ==========================================================
elif page == "Assistant Harry":
    st.header("Assistant Harry")
    moto = st.selectbox("Moto", user_motos, format_func=moto_label, index=None, placeholder="Aucune moto")
    kit = store.get_default_kit(moto["id"]) if moto else None

    conversations = store.list_conversations(user_id)
    col_c1, col_c2 = st.columns([0.7, 0.3])
    with col_c2:
        if st.button("Nouvelle conversation", use_container_width=True):
            try:
                conv_id = store.create_conversation(user_id, f"Réglage {moto_label(moto)}" if moto else "Réglage", moto["id"] if moto else None)
                store.add_message(conv_id, "assistant", WELCOME_MESSAGE)
            except StoreError:
                store_failed("Impossible de créer la conversation.", "create conversation")
            else:
                st.session_state.conversation_id = conv_id
                st.rerun()
    with col_c1:
        if conversations:
            ids = [c["id"] for c in conversations]
            current_id = st.session_state.get("conversation_id")
            conversation = st.selectbox("Conversation", conversations, format_func=lambda c: c["title"],
                                        index=ids.index(current_id) if current_id in ids else 0)
            st.session_state.conversation_id = conversation["id"]
        else:
            conversation = None

    if conversation is None:
        st.info("Démarre une nouvelle conversation.")
        st.stop()

    chat_steps_block(conversation["step"])
    if st.session_state.get("chat_notice"):
        st.warning(st.session_state.pop("chat_notice"))
    for message in store.list_messages(conversation["id"]):
        with st.chat_message(message["role"]):
            st.markdown(message["content"])
            if message["metadata"] and message["metadata"].get("config"):
                config_summary(message["metadata"]["config"])
    if conversation["step"] == ConversationStep.TEST.value:
        st.info("Après ton essai, note la config dans Mes configs > À tester.")

    user_text = st.chat_input("Décris ton besoin, ton terrain, tes sensations...")
    if user_text:
        client = ChatClient(CHAT_ENDPOINT, CHAT_API_KEY, model=CHAT_MODEL, timeout=CHAT_TIMEOUT_S)
        try:
            result = run_exchange(store, client.generate, conversation["id"], user_text, context=describe_context(moto, kit))
        except StoreError:
            logger.exception("Exchange failed for conversation %s", conversation["id"])
            st.session_state.chat_notice = "Message non enregistré, la base de données est indisponible."
        else:
            if result.provider_failed:
                st.session_state.chat_notice = "IA indisponible, réessaie dans un instant."
            elif not result.persisted:
                st.session_state.chat_notice = "L'étape de la conversation n'a pas pu être mise à jour."
            if result.config is not None:
                st.session_state.pending_config = result.config
        st.rerun()

    pending = st.session_state.get("pending_config")
    if pending and moto:
        st.divider()
        config_summary(pending)
        visibility = st.radio("Visibilité", VISIBILITY_OPTIONS, horizontal=True)
        if st.button("Sauvegarder cette config"):
            try:
                store.create_config(user_id, moto["id"], pending, suspension_kit_id=kit["id"] if kit else None,
                                    conversation_id=conversation["id"], visibility=visibility)
            except StoreError:
                store_failed("Impossible de sauvegarder la config.", "create config")
            else:
                del st.session_state["pending_config"]
                st.success("Config sauvegardée.")

    with st.expander("Config rapide sans IA"):
        col_i1, col_i2 = st.columns(2)
        with col_i1:
            sport = st.selectbox("Discipline", SPORT_TYPES, key="intake_sport")
            terrain = st.selectbox("Terrain", TERRAIN_TYPES, key="intake_terrain")
            weight = st.number_input("Poids équipé (kg)", 40, 160, DEFAULT_DIRECT_PROFILE["rider_weight"])
        with col_i2:
            level = st.selectbox("Niveau", RIDER_LEVELS, index=RIDER_LEVELS.index(DEFAULT_DIRECT_PROFILE["rider_level"]))
            style = st.selectbox("Style", RIDER_STYLES)
            objective = st.selectbox("Objectif", RIDER_OBJECTIVES, index=RIDER_OBJECTIVES.index(DEFAULT_DIRECT_PROFILE["rider_objective"]))
        intake = {"sport_type": sport, "terrain_type": terrain, "rider_weight": weight,
                  "rider_level": level, "rider_style": style, "rider_objective": objective}
        quick = build_deterministic_config(intake, kit or {})
        feedback = st.text_input("Ressenti après essai (ex: la fourche plonge, l'arrière talonne)")
        if feedback:
            quick = apply_feedback_adjustments(quick, feedback)
        config_summary(quick)
        if st.button("Utiliser cette config"):
            st.session_state.pending_config = quick
            st.rerun()

# ==========================================================
# 5. CONFIGS
# ==========================================================
else:
    st.header("Configs")
    shared = st.query_params.get("share")
    if shared:
        found = store.get_config_by_share_link(shared)
        if found: config_summary(found)
        else: st.warning("Lien de partage invalide.")
        st.divider()

    tab_mine, tab_test, tab_public = st.tabs(["Mes configs", "À tester", "Communauté"])

    with tab_mine:
        df = store.configs_frame(user_id)
        if df.empty:
            st.info("Aucune config enregistrée.")
        else:
            st.dataframe(df[["name", "sport_type", "terrain_type", "visibility"] + SETTING_FIELDS]
                         .rename(columns={"name": "Nom", "sport_type": "Discipline", "terrain_type": "Terrain", **SETTING_LABELS}),
                         hide_index=True)

            saved = store.list_configs(user_id=user_id)
            chosen = st.selectbox("Config", saved, format_func=lambda c: c["name"])
            config_summary(chosen)
            if chosen["share_link"] and chosen["visibility"] != "private":
                st.code(f"?share={chosen['share_link']}")
            motos_by_id = {m["id"]: m for m in user_motos}
            label = moto_label(motos_by_id[chosen["moto_id"]]) if chosen["moto_id"] in motos_by_id else "-"
            st.download_button("Exporter en PDF", data=generate_config_pdf(chosen, label),
                               file_name=f"{chosen['name']}.pdf", mime="application/pdf")

            with st.expander("Modifier"):
                changes = config_editor(chosen)
                if changes is not None:
                    try:
                        store.update_config(chosen["id"], **changes)
                        st.rerun()
                    except StoreError:
                        store_failed("Impossible de modifier la config.", f"update config {chosen['id']}")
            if st.button("Supprimer cette config"):
                try:
                    store.delete_config(chosen["id"])
                    st.rerun()
                except StoreError:
                    store_failed("Impossible de supprimer la config.", f"delete config {chosen['id']}")
            for fb in store.list_feedback(chosen["id"]):
                st.caption(f"{fb['satisfaction']}/10 - {fb['note'] or ''}")

    with tab_test:
        to_test = store.list_configs_to_test(user_id)
        if not to_test:
            st.info("Aucune config en attente d'essai.")
        else:
            tested = st.selectbox("Config essayée", to_test, format_func=lambda c: c["name"])
            rating = feedback_form(tested["id"])
            if rating is not None:
                try:
                    store.submit_feedback(user_id, tested["id"], *rating)
                except (StoreError, PermissionError, ValueError):
                    store_failed("Impossible d'enregistrer ton avis.", f"submit feedback on {tested['id']}")
                else:
                    st.success("Merci pour ton retour !")
                    st.rerun()

    with tab_public:
        col_p1, col_p2 = st.columns(2)
        with col_p1: pub_sport = st.selectbox("Discipline", [None] + SPORT_TYPES, format_func=lambda s: s or "Toutes", key="pub_sport")
        with col_p2: pub_terrain = st.selectbox("Terrain", [None] + TERRAIN_TYPES, format_func=lambda t: t or "Tous", key="pub_terrain")
        public = store.list_public_configs(sport_type=pub_sport, terrain_type=pub_terrain)
        if not public:
            st.info("Aucune config publique.")
        for config in public:
            with st.expander(config["name"]):
                config_summary(config)
