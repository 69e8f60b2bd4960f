# store.py
"""Record storage for motos, kits, configs, conversations and feedback.

Any SQLAlchemy engine works; the app gets one from
``st.connection("mxtune", type="sql").engine``. Every public write runs in a
single transaction, so multi-row operations either land whole or not at all.
"""
import json
import logging
import secrets
import time
import uuid
from contextlib import contextmanager

import pandas as pd
from sqlalchemy import (
    BigInteger, Boolean, Column, Float, Integer, MetaData, String, Table, Text, UniqueConstraint,
    delete, or_, select, update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from constants import (
    SETTING_FIELDS, CONFIG_FIELDS, CONFIG_ADJUSTABLE_FIELDS, VISIBILITY_OPTIONS, SATISFACTION_MIN, SATISFACTION_MAX,
)

logger = logging.getLogger(__name__)

metadata = MetaData()


def _id_column():
    return Column("id", String(32), primary_key=True)


motos = Table(
    "motos", metadata,
    _id_column(),
    Column("user_id", String(64), nullable=False, index=True),
    Column("brand", String(64), nullable=False),
    Column("model", String(64), nullable=False),
    Column("year", Integer, nullable=False),
    Column("is_stock_suspension", Boolean, default=True),
    Column("fork_brand", String(64)),
    Column("fork_model", String(64)),
    Column("shock_brand", String(64)),
    Column("shock_model", String(64)),
    Column("suspension_notes", Text),
    Column("is_public", Boolean, default=False),
    Column("created_at", BigInteger, nullable=False),
)

kits = Table(
    "kits", metadata,
    _id_column(),
    Column("moto_id", String(32), nullable=False, index=True),
    Column("user_id", String(64), nullable=False),
    Column("name", String(128), nullable=False),
    Column("description", Text),
    Column("sport_type", String(32)),
    Column("terrain_type", String(32)),
    Column("fork_brand", String(64)),
    Column("shock_brand", String(64)),
    *[Column(f"max_{f}", Integer) for f in SETTING_FIELDS],
    *[Column(f"base_{f}", Float) for f in SETTING_FIELDS],
    *[Column(f, Float) for f in SETTING_FIELDS],
    Column("is_default", Boolean, default=False),
    Column("created_at", BigInteger, nullable=False),
)

configs = Table(
    "configs", metadata,
    _id_column(),
    Column("user_id", String(64), nullable=False, index=True),
    Column("moto_id", String(32), nullable=False, index=True),
    Column("suspension_kit_id", String(32), index=True),
    Column("conversation_id", String(32)),
    Column("name", String(128), nullable=False),
    Column("description", Text),
    Column("sport_type", String(32)),
    Column("terrain_type", String(32)),
    *[Column(f, Float) for f in SETTING_FIELDS],
    Column("fork_preload", String(32)),
    Column("shock_preload", String(32)),
    Column("static_sag", Float),
    Column("dynamic_sag", Float),
    Column("tire_pressure_front", Float),
    Column("tire_pressure_rear", Float),
    Column("conditions", String(32)),
    Column("visibility", String(16), nullable=False),
    Column("share_link", String(32), unique=True),
    Column("is_public", Boolean, nullable=False),
    Column("created_at", BigInteger, nullable=False),
)

config_feedbacks = Table(
    "config_feedbacks", metadata,
    _id_column(),
    Column("config_id", String(32), nullable=False, index=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("satisfaction", Integer, nullable=False),
    Column("note", Text),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
    UniqueConstraint("user_id", "config_id"),
)

conversations = Table(
    "conversations", metadata,
    _id_column(),
    Column("user_id", String(64), nullable=False, index=True),
    Column("moto_id", String(32)),
    Column("title", String(256), nullable=False),
    Column("step", String(16), nullable=False),
    Column("config_mode", String(16)),
    Column("is_active", Boolean, nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

messages = Table(
    "messages", metadata,
    _id_column(),
    Column("conversation_id", String(32), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("role", String(16), nullable=False),
    Column("content", Text, nullable=False),
    Column("metadata", Text),
    Column("created_at", BigInteger, nullable=False),
)

MOTO_EDITABLE = {"brand", "model", "year", "is_stock_suspension", "fork_brand", "fork_model",
                 "shock_brand", "shock_model", "suspension_notes", "is_public"}
KIT_EDITABLE = {"name", "description", "sport_type", "terrain_type", "fork_brand", "shock_brand",
                *(f"max_{f}" for f in SETTING_FIELDS), *(f"base_{f}" for f in SETTING_FIELDS), *SETTING_FIELDS}
CONFIG_EDITABLE = set(CONFIG_FIELDS)


class StoreError(Exception):
    """Raised when the database cannot be read or written."""


class RecordNotFound(StoreError):
    pass


def _now_ms():
    return int(time.time() * 1000)


def _new_id():
    return uuid.uuid4().hex


def _check_fields(changes, allowed):
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"unknown fields: {sorted(unknown)}")


def _rows(conn, stmt):
    return [dict(row) for row in conn.execute(stmt).mappings()]


def _insert(conn, table, record):
    row = {col.name: record.get(col.name) for col in table.columns if col.name in record}
    conn.execute(table.insert().values(**row))
    logger.debug("Inserted %s into %s", row["id"], table.name)
    return row["id"]


def _patch(conn, table, record_id, changes):
    result = conn.execute(update(table).where(table.c.id == record_id).values(**changes))
    if result.rowcount == 0:
        raise RecordNotFound(f"{table.name} {record_id} not found")


def _get_in(conn, table, record_id):
    rows = _rows(conn, select(table).where(table.c.id == record_id))
    if not rows:
        raise RecordNotFound(f"{table.name} {record_id} not found")
    return rows[0]


class TableStore:
    def __init__(self, engine):
        self.engine = engine
        try:
            metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not prepare tables: {exc}") from exc

    # --- Table access ---
    @contextmanager
    def _transaction(self, action):
        """Commits on success, rolls back on any error."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise StoreError(f"could not {action}: {exc}") from exc

    def _fetch(self, stmt):
        try:
            with self.engine.connect() as conn:
                return _rows(conn, stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"query failed: {exc}") from exc

    def _get(self, table, record_id):
        rows = self._fetch(select(table).where(table.c.id == record_id))
        return rows[0] if rows else None

    # --- Motos ---
    def create_moto(self, user_id, brand, model, year, **details):
        """Creates a moto together with its default suspension kit."""
        is_stock = details.get("is_stock_suspension", True)
        with self._transaction("create moto") as conn:
            moto_id = _insert(conn, motos, {
                **details,
                "id": _new_id(),
                "user_id": user_id,
                "brand": brand,
                "model": model,
                "year": int(year),
                "is_stock_suspension": is_stock,
                "is_public": details.get("is_public", False),
                "created_at": _now_ms(),
            })
            self._insert_kit(
                conn, moto_id, user_id,
                "Kit d'origine" if is_stock else "Kit Standard",
                description="Configuration d'usine" if is_stock else "Configuration personnalisée",
                fork_brand=details.get("fork_brand"),
                shock_brand=details.get("shock_brand"),
                is_default=True,
                **{k: v for k, v in details.items() if k.startswith(("max_", "base_"))},
            )
        return moto_id

    def get_moto(self, moto_id):
        return self._get(motos, moto_id)

    def list_motos(self, user_id):
        return self._fetch(select(motos).where(motos.c.user_id == user_id).order_by(motos.c.created_at.desc()))

    def update_moto(self, moto_id, **changes):
        _check_fields(changes, MOTO_EDITABLE)
        if not changes:
            return
        with self._transaction("update moto") as conn:
            _patch(conn, motos, moto_id, changes)

    def delete_moto(self, moto_id):
        """Deletes a moto and all of its kits."""
        with self._transaction("delete moto") as conn:
            _get_in(conn, motos, moto_id)
            conn.execute(delete(kits).where(kits.c.moto_id == moto_id))
            conn.execute(delete(motos).where(motos.c.id == moto_id))
        logger.info("Deleted moto %s", moto_id)

    # --- Kits ---
    def _insert_kit(self, conn, moto_id, user_id, name, **fields):
        existing = _rows(conn, select(kits.c.id, kits.c.is_default).where(kits.c.moto_id == moto_id))
        is_default = bool(fields.pop("is_default", False)) or not existing
        if is_default:
            conn.execute(update(kits).where(kits.c.moto_id == moto_id).values(is_default=False))

        record = {**fields, "id": _new_id(), "moto_id": moto_id, "user_id": user_id, "name": name,
                  "is_default": is_default, "created_at": _now_ms()}
        # Current settings start from the base settings
        for field in SETTING_FIELDS:
            if record.get(field) is None:
                record[field] = record.get(f"base_{field}")
        return _insert(conn, kits, record)

    def create_kit(self, moto_id, user_id, name, **fields):
        with self._transaction("create kit") as conn:
            return self._insert_kit(conn, moto_id, user_id, name, **fields)

    def get_kit(self, kit_id):
        return self._get(kits, kit_id)

    def list_kits(self, moto_id):
        return self._fetch(select(kits).where(kits.c.moto_id == moto_id).order_by(kits.c.created_at))

    def get_default_kit(self, moto_id):
        moto_kits = self.list_kits(moto_id)
        for kit in moto_kits:
            if kit.get("is_default"):
                return kit
        return moto_kits[0] if moto_kits else None

    def update_kit(self, kit_id, **changes):
        """Edits kit fields; ``is_default=True`` also clears the moto's other defaults."""
        make_default = bool(changes.pop("is_default", False))
        _check_fields(changes, KIT_EDITABLE)
        with self._transaction("update kit") as conn:
            if changes:
                _patch(conn, kits, kit_id, changes)
            if make_default:
                self._make_default(conn, kit_id)

    def set_default_kit(self, kit_id):
        with self._transaction("set default kit") as conn:
            self._make_default(conn, kit_id)

    def _make_default(self, conn, kit_id):
        kit = _get_in(conn, kits, kit_id)
        conn.execute(update(kits).where(kits.c.moto_id == kit["moto_id"]).values(is_default=False))
        _patch(conn, kits, kit_id, {"is_default": True})

    def delete_kit(self, kit_id):
        """Deletes a kit; when it was the default, the oldest remaining kit takes over."""
        with self._transaction("delete kit") as conn:
            kit = _get_in(conn, kits, kit_id)
            conn.execute(delete(kits).where(kits.c.id == kit_id))
            if kit["is_default"]:
                remaining = _rows(conn, select(kits.c.id).where(kits.c.moto_id == kit["moto_id"])
                                  .order_by(kits.c.created_at).limit(1))
                if remaining:
                    _patch(conn, kits, remaining[0]["id"], {"is_default": True})

    def update_kit_settings(self, kit_id, settings):
        """Writes a SuspensionSettings (or a field dict) as the kit's current values."""
        values = settings.as_dict() if hasattr(settings, "as_dict") else dict(settings)
        _check_fields(values, set(SETTING_FIELDS))
        with self._transaction("update kit settings") as conn:
            _patch(conn, kits, kit_id, values)

    # --- Configs ---
    def create_config(self, user_id, moto_id, config, suspension_kit_id=None, conversation_id=None, visibility="private"):
        if visibility not in VISIBILITY_OPTIONS:
            raise ValueError(f"visibility must be one of {VISIBILITY_OPTIONS}")
        record = {field: config.get(field) for field in CONFIG_FIELDS}
        record.update({
            "id": _new_id(),
            "user_id": user_id,
            "moto_id": moto_id,
            "suspension_kit_id": suspension_kit_id,
            "conversation_id": conversation_id,
            "name": config.get("name") or "Config sans nom",
            "visibility": visibility,
            "share_link": secrets.token_urlsafe(12) if visibility != "private" else None,
            "is_public": visibility == "public",
            "created_at": _now_ms(),
        })
        with self._transaction("create config") as conn:
            return _insert(conn, configs, record)

    def get_config(self, config_id):
        return self._get(configs, config_id)

    def get_config_by_share_link(self, share_link):
        rows = self._fetch(select(configs).where(configs.c.share_link == share_link))
        if not rows or rows[0]["visibility"] == "private":
            return None
        return rows[0]

    def list_configs(self, user_id=None, moto_id=None, suspension_kit_id=None):
        stmt = select(configs).order_by(configs.c.created_at.desc())
        for col, value in (("user_id", user_id), ("moto_id", moto_id), ("suspension_kit_id", suspension_kit_id)):
            if value is not None:
                stmt = stmt.where(configs.c[col] == value)
        return self._fetch(stmt)

    def list_public_configs(self, sport_type=None, terrain_type=None):
        """Community configs, newest first, optionally filtered by discipline and terrain."""
        stmt = (select(configs).where(or_(configs.c.visibility == "public", configs.c.is_public.is_(True)))
                .order_by(configs.c.created_at.desc()))
        if sport_type:
            stmt = stmt.where(configs.c.sport_type == sport_type)
        if terrain_type:
            stmt = stmt.where(configs.c.terrain_type == terrain_type)
        return self._fetch(stmt)

    def configs_frame(self, user_id):
        """User configs as a DataFrame for tabular display."""
        stmt = select(configs).where(configs.c.user_id == user_id).order_by(configs.c.created_at.desc())
        try:
            with self.engine.connect() as conn:
                return pd.read_sql(stmt, conn)
        except SQLAlchemyError as exc:
            raise StoreError(f"query failed: {exc}") from exc

    def update_config(self, config_id, **changes):
        """Edits a config. Changing visibility also updates ``is_public`` and issues a share link if needed."""
        visibility = changes.pop("visibility", None)
        _check_fields(changes, CONFIG_EDITABLE)
        if visibility is not None and visibility not in VISIBILITY_OPTIONS:
            raise ValueError(f"visibility must be one of {VISIBILITY_OPTIONS}")
        with self._transaction("update config") as conn:
            current = _get_in(conn, configs, config_id)
            if visibility is not None:
                changes["visibility"] = visibility
                changes["is_public"] = visibility == "public"
                if visibility != "private" and not current["share_link"]:
                    changes["share_link"] = secrets.token_urlsafe(12)
            if changes:
                _patch(conn, configs, config_id, changes)

    def update_config_field(self, config_id, field, value):
        if field not in CONFIG_ADJUSTABLE_FIELDS:
            raise ValueError(f"field not adjustable: {field}")
        self.update_config(config_id, **{field: value})

    def delete_config(self, config_id):
        """Deletes a config and the feedback left on it."""
        with self._transaction("delete config") as conn:
            _get_in(conn, configs, config_id)
            conn.execute(delete(config_feedbacks).where(config_feedbacks.c.config_id == config_id))
            conn.execute(delete(configs).where(configs.c.id == config_id))

    # --- Feedback ---
    def submit_feedback(self, user_id, config_id, satisfaction, note=None):
        """Records a rider's 1-10 rating of a config they tested. One rating per rider and config."""
        if not SATISFACTION_MIN <= satisfaction <= SATISFACTION_MAX:
            raise ValueError(f"satisfaction must be between {SATISFACTION_MIN} and {SATISFACTION_MAX}")
        now = _now_ms()
        try:
            with self.engine.begin() as conn:
                config = _get_in(conn, configs, config_id)
                if config["user_id"] != user_id and not config["is_public"]:
                    raise PermissionError(f"config {config_id} is not open to feedback from {user_id}")
                return _insert(conn, config_feedbacks, {
                    "id": _new_id(),
                    "config_id": config_id,
                    "user_id": user_id,
                    "satisfaction": int(satisfaction),
                    "note": (note or "").strip() or None,
                    "created_at": now,
                    "updated_at": now,
                })
        except IntegrityError as exc:
            raise ValueError(f"{user_id} already rated config {config_id}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"could not submit feedback: {exc}") from exc

    def list_feedback(self, config_id):
        stmt = (select(config_feedbacks).where(config_feedbacks.c.config_id == config_id)
                .order_by(config_feedbacks.c.created_at.desc()))
        return self._fetch(stmt)

    def list_configs_to_test(self, user_id):
        """Assistant configs of the rider that they have not rated yet."""
        rated = select(config_feedbacks.c.config_id).where(config_feedbacks.c.user_id == user_id)
        stmt = (select(configs)
                .where(configs.c.user_id == user_id, configs.c.conversation_id.is_not(None), configs.c.id.not_in(rated))
                .order_by(configs.c.created_at.desc()))
        return self._fetch(stmt)

    # --- Conversations & messages ---
    def create_conversation(self, user_id, title, moto_id=None):
        now = _now_ms()
        with self._transaction("create conversation") as conn:
            return _insert(conn, conversations, {
                "id": _new_id(), "user_id": user_id, "moto_id": moto_id, "title": title,
                "step": "collecte", "config_mode": None, "is_active": True,
                "created_at": now, "updated_at": now,
            })

    def get_conversation(self, conversation_id):
        return self._get(conversations, conversation_id)

    def list_conversations(self, user_id):
        stmt = select(conversations).where(conversations.c.user_id == user_id).order_by(conversations.c.updated_at.desc())
        return self._fetch(stmt)

    def update_step(self, conversation_id, step, config_mode=None):
        changes = {"step": step, "updated_at": _now_ms()}
        if config_mode is not None:
            changes["config_mode"] = config_mode
        with self._transaction("update step") as conn:
            _patch(conn, conversations, conversation_id, changes)

    def add_message(self, conversation_id, role, content, metadata=None):
        with self._transaction("add message") as conn:
            position = len(_rows(conn, select(messages.c.id).where(messages.c.conversation_id == conversation_id)))
            return _insert(conn, messages, {
                "id": _new_id(),
                "conversation_id": conversation_id,
                "position": position,
                "role": role,
                "content": content,
                "metadata": json.dumps(metadata, ensure_ascii=False) if metadata else None,
                "created_at": _now_ms(),
            })

    def list_messages(self, conversation_id):
        stmt = select(messages).where(messages.c.conversation_id == conversation_id).order_by(messages.c.position)
        rows = self._fetch(stmt)
        for row in rows:
            row["metadata"] = json.loads(row["metadata"]) if row["metadata"] else None
        return rows
