import io
import os
import re
import json
import math
import shutil
import secrets
import logging
import tempfile
import threading
from datetime import datetime, timezone
from typing import List, Literal, Optional, get_args

import bcrypt
import pandas as pd
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import DATA_ROOT, USERS_YAML, SETTINGS_YAML

logger = logging.getLogger(__name__)

CARDS_FILE = "cards.json"
WISHLIST_FILE = "wishlist.json"
SALT_ROUNDS = 12
MIN_CARD_YEAR = 1800

ConditionGrade = Literal['Poor', 'Fair', 'Good', 'Very Good', 'Excellent', 'Near Mint', 'Mint', 'Gem Mint']
CONDITION_GRADES = list(get_args(ConditionGrade))
CONDITION_SCORES = ['centering', 'corners', 'edges', 'surface']
WISHLIST_PRIORITIES = ['low', 'medium', 'high']

# Server-managed card fields that request bodies may not overwrite
PROTECTED_FIELDS = {'id', '_id', 'user_id', 'created_at', 'updated_at'}

# Flat column layout for CSV export/import
EXPORT_COLS = [
    'id', 'player_name', 'sport', 'year', 'manufacturer', 'set_name', 'card_number',
    'condition_centering', 'condition_corners', 'condition_edges', 'condition_surface',
    'condition_overall', 'is_rookie_card', 'is_autograph', 'is_memorabilia',
    'estimated_value', 'market_value', 'is_for_trade', 'tags', 'notes', 'lot_number',
    'front_image', 'back_image', 'created_at', 'updated_at',
]
BOOL_COLS = ['is_rookie_card', 'is_autograph', 'is_memorabilia', 'is_for_trade']
TAG_SEPARATOR = '|'

# Guards every read-modify-write on the JSON stores; scan jobs write from a worker thread
_STORE_LOCK = threading.RLock()

_USERNAME_RE = re.compile(r'^[A-Za-z0-9_.@-]+$')


class CardValidationError(ValueError):
    """Raised when card or wishlist data fails schema validation."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__("; ".join(errors))


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
        for err in exc.errors()
    ]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds')


def new_id() -> str:
    """Return a 24-character hex document id."""
    return secrets.token_hex(12)


# ── Schemas ──────────────────────────────────────────────────────

class Condition(BaseModel):
    model_config = ConfigDict(extra='ignore')

    centering: int = Field(ge=1, le=10)
    corners:   int = Field(ge=1, le=10)
    edges:     int = Field(ge=1, le=10)
    surface:   int = Field(ge=1, le=10)
    overall:   ConditionGrade


class CardModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore', allow_inf_nan=False)

    player_name:     str = Field(min_length=1)
    sport:           str = Field(min_length=1)
    year:            int
    manufacturer:    str = Field(min_length=1)
    set_name:        str = Field(min_length=1)
    card_number:     str = Field(min_length=1)
    front_image:     str = Field(min_length=1)
    back_image:      str = Field(min_length=1)
    condition:       Condition
    is_rookie_card:  bool = False
    is_autograph:    bool = False
    is_memorabilia:  bool = False
    estimated_value: float = Field(default=0, ge=0)
    market_value:    float = Field(default=0, ge=0)
    tags:            List[str] = Field(default_factory=list)
    notes:           str = ""
    lot_number:      Optional[str] = None
    is_for_trade:    bool = False

    @field_validator('year')
    @classmethod
    def _year_in_range(cls, v):
        max_year = datetime.now().year + 1
        if v < MIN_CARD_YEAR or v > max_year:
            raise ValueError(f"year must be between {MIN_CARD_YEAR} and {max_year}")
        return v

    @field_validator('tags')
    @classmethod
    def _drop_blank_tags(cls, v):
        return [t for t in v if t]


class WishlistItemModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore', allow_inf_nan=False)

    player_name:          str = Field(min_length=1)
    sport:                str = Field(min_length=1)
    year:                 Optional[int] = None
    manufacturer:         Optional[str] = None
    set_name:             Optional[str] = None
    card_number:          Optional[str] = None
    priority:             Literal['low', 'medium', 'high'] = 'medium'
    max_price:            Optional[float] = Field(default=None, ge=0)
    notes:                str = ""
    price_alerts:         bool = False
    current_market_price: Optional[float] = Field(default=None, ge=0)


def validate_card(data: dict) -> dict:
    """Validate raw card data and return the cleaned field dict.

    Raises:
        CardValidationError: if any field is missing or out of range.
    """
    try:
        return CardModel.model_validate(data).model_dump()
    except ValidationError as e:
        raise CardValidationError(_format_errors(e)) from e


def validate_card_update(existing: dict, changes: dict) -> dict:
    """Apply a partial update to a stored card and re-validate the result.

    The condition sub-document is merged field by field so a client can
    change one score without resending the others. Server-managed fields
    are carried over from the existing card.
    """
    changes = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
    merged = {**existing, **changes}
    if isinstance(changes.get('condition'), dict) and isinstance(existing.get('condition'), dict):
        merged['condition'] = {**existing['condition'], **changes['condition']}
    cleaned = validate_card(merged)
    return {
        'id':         existing['id'],
        **cleaned,
        'user_id':    existing.get('user_id'),
        'created_at': existing.get('created_at') or _now(),
        'updated_at': _now(),
    }


def validate_wishlist_item(data: dict) -> dict:
    try:
        return WishlistItemModel.model_validate(data).model_dump()
    except ValidationError as e:
        raise CardValidationError(_format_errors(e)) from e


# ── Paths & JSON stores ──────────────────────────────────────────

def get_user_paths(username):
    """Return file paths for a specific user's data directory."""
    if not username or username in ('.', '..') or not _USERNAME_RE.match(username):
        raise ValueError(f"Invalid username: {username!r}")
    user_dir = os.path.join(DATA_ROOT, username)
    os.makedirs(user_dir, exist_ok=True)
    os.makedirs(os.path.join(user_dir, "backups"), exist_ok=True)
    return {
        'cards':      os.path.join(user_dir, CARDS_FILE),
        'wishlist':   os.path.join(user_dir, WISHLIST_FILE),
        'backup_dir': os.path.join(user_dir, "backups"),
    }


def _read_json(path, default):
    if not os.path.exists(path):
        return default
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _write_atomic(path, dump):
    """Write through a temp file in the same directory, then swap it into place."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            dump(f)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _write_json(path, data):
    _write_atomic(path, lambda f: json.dump(data, f, indent=2, ensure_ascii=False))


def _write_yaml(path, data):
    _write_atomic(path, lambda f: yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True))


def load_cards(cards_path):
    """Load the list of card documents for one user."""
    with _STORE_LOCK:
        cards = _read_json(cards_path, [])
    if not isinstance(cards, list):
        raise ValueError(f"Corrupt card store: {cards_path}")
    return cards


def save_cards(cards, cards_path):
    with _STORE_LOCK:
        _write_json(cards_path, cards)


# ── Cards ────────────────────────────────────────────────────────

def create_card(data, user, cards_path):
    """Validate and append a new card owned by ``user``. Returns the stored card."""
    cleaned = validate_card(data)
    now = _now()
    card = {'id': new_id(), **cleaned, 'user_id': user, 'created_at': now, 'updated_at': now}
    with _STORE_LOCK:
        cards = load_cards(cards_path)
        cards.append(card)
        save_cards(cards, cards_path)
    return card


def create_cards(items, user, cards_path):
    """Append several already-validated card field dicts in one write."""
    now = _now()
    created = [
        {'id': new_id(), **item, 'user_id': user, 'created_at': now, 'updated_at': now}
        for item in items
    ]
    with _STORE_LOCK:
        cards = load_cards(cards_path)
        cards.extend(created)
        save_cards(cards, cards_path)
    return created


def get_card(card_id, cards_path):
    for card in load_cards(cards_path):
        if card.get('id') == card_id:
            return card
    return None


def update_card(card_id, changes, cards_path):
    """Apply a partial update. Returns the updated card, or None if not found."""
    with _STORE_LOCK:
        cards = load_cards(cards_path)
        for i, card in enumerate(cards):
            if card.get('id') == card_id:
                cards[i] = validate_card_update(card, changes)
                save_cards(cards, cards_path)
                return cards[i]
    return None


def delete_card(card_id, cards_path):
    """Remove a card. Returns the deleted card, or None if not found."""
    with _STORE_LOCK:
        cards = load_cards(cards_path)
        for i, card in enumerate(cards):
            if card.get('id') == card_id:
                removed = cards.pop(i)
                save_cards(cards, cards_path)
                return removed
    return None


def _newest_first(cards):
    return sorted(cards, key=lambda c: c.get('created_at') or '', reverse=True)


def query_cards(cards, search=None, sport=None, year=None, for_trade=None, page=1, limit=None):
    """Filter, sort (newest first) and paginate a card list.

    Args:
        cards: List of card documents.
        search: Case-insensitive substring matched against player name,
                set name, manufacturer and tags.
        sport: Exact sport match, case-insensitive.
        year: Exact card year.
        for_trade: When not None, keep only cards whose trade flag matches.
        page: 1-based page number.
        limit: Page size; None returns every match on page 1.

    Returns:
        Tuple of (page_cards, total, page, total_pages).
    """
    result = cards
    if search:
        needle = search.strip().lower()
        result = [
            c for c in result
            if needle in str(c.get('player_name', '')).lower()
            or needle in str(c.get('set_name', '')).lower()
            or needle in str(c.get('manufacturer', '')).lower()
            or any(needle in str(t).lower() for t in c.get('tags', []))
        ]
    if sport:
        result = [c for c in result if str(c.get('sport', '')).lower() == sport.strip().lower()]
    if year is not None:
        result = [c for c in result if c.get('year') == year]
    if for_trade is not None:
        result = [c for c in result if bool(c.get('is_for_trade')) == for_trade]

    result = _newest_first(result)
    total = len(result)
    page = max(1, page)
    if not limit:
        return result, total, 1, 1
    total_pages = max(1, math.ceil(total / limit))
    start = (page - 1) * limit
    return result[start:start + limit], total, page, total_pages


def collection_stats(cards, recent=5):
    """Summarise a collection: counts, value totals, newest cards, per-sport counts."""
    if not cards:
        return {
            "total_cards":        0,
            "total_value":        0.0,
            "total_market_value": 0.0,
            "for_trade_count":    0,
            "recent_cards":       [],
            "sport_breakdown":    [],
        }

    df = pd.DataFrame(cards)
    for col in ('estimated_value', 'market_value'):
        if col not in df.columns:
            df[col] = 0
        df[col] = pd.to_numeric(df[col], errors='coerce').fillna(0)
    if 'is_for_trade' not in df.columns:
        df['is_for_trade'] = False
    if 'sport' not in df.columns:
        df['sport'] = 'Unknown'
    df['sport'] = df['sport'].fillna('Unknown')

    breakdown = df.groupby('sport').size().sort_values(ascending=False, kind='stable')
    return {
        "total_cards":        int(len(df)),
        "total_value":        round(float(df['estimated_value'].sum()), 2),
        "total_market_value": round(float(df['market_value'].sum()), 2),
        "for_trade_count":    int(df['is_for_trade'].fillna(False).astype(bool).sum()),
        "recent_cards":       _newest_first(cards)[:recent],
        "sport_breakdown":    [{"sport": s, "count": int(n)} for s, n in breakdown.items()],
    }


# ── Wishlist ─────────────────────────────────────────────────────

def load_wishlist(wishlist_path):
    with _STORE_LOCK:
        return _read_json(wishlist_path, [])


def save_wishlist(items, wishlist_path):
    with _STORE_LOCK:
        _write_json(wishlist_path, items)


def add_wishlist_item(data, wishlist_path):
    cleaned = validate_wishlist_item(data)
    item = {'id': new_id(), **cleaned, 'date_added': _now()}
    with _STORE_LOCK:
        items = load_wishlist(wishlist_path)
        items.append(item)
        save_wishlist(items, wishlist_path)
    return item


def update_wishlist_item(item_id, changes, wishlist_path):
    changes = {k: v for k, v in changes.items() if k not in ('id', 'date_added')}
    with _STORE_LOCK:
        items = load_wishlist(wishlist_path)
        for i, item in enumerate(items):
            if item.get('id') == item_id:
                cleaned = validate_wishlist_item({**item, **changes})
                items[i] = {'id': item_id, **cleaned, 'date_added': item.get('date_added')}
                save_wishlist(items, wishlist_path)
                return items[i]
    return None


def remove_wishlist_item(item_id, wishlist_path):
    with _STORE_LOCK:
        items = load_wishlist(wishlist_path)
        for i, item in enumerate(items):
            if item.get('id') == item_id:
                removed = items.pop(i)
                save_wishlist(items, wishlist_path)
                return removed
    return None


# ── Users ────────────────────────────────────────────────────────

def load_users():
    """Load user config from users.yaml."""
    if not os.path.exists(USERS_YAML):
        return {}
    with open(USERS_YAML, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}
    return config.get('users', {}) or {}


def save_users(users_dict):
    with _STORE_LOCK:
        _write_yaml(USERS_YAML, {'users': users_dict})


def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=SALT_ROUNDS)).decode('utf-8')


def verify_password(username, password):
    """Verify a username/password against users.yaml. Returns True if valid."""
    users = load_users()
    if username not in users:
        return False
    pw_hash = users[username].get('password_hash', '')
    try:
        return bcrypt.checkpw(password.encode('utf-8'), pw_hash.encode('utf-8'))
    except ValueError:
        return False


# ── Settings ─────────────────────────────────────────────────────

DEFAULT_SETTINGS = {
    'ebay': {
        'app_id':      '',
        'dev_id':      '',
        'cert_id':     '',
        'user_token':  '',
        'environment': 'sandbox',
    },
    'tcgplayer': {
        'api_key':     '',
        'partner_id':  '',
        'environment': 'sandbox',
    },
    'notifications': {
        'email':          True,
        'push':           True,
        'price_alerts':   True,
        'trade_requests': True,
        'market_updates': False,
    },
    'scanning': {
        'auto_process':         True,
        'confidence_threshold': 0.8,
        'image_quality':        'high',
        'batch_size':           10,
    },
}

SECRET_SETTINGS = {'cert_id', 'user_token', 'api_key'}


def redact(values):
    """Copy of a settings section with secret values masked for logging."""
    return {
        k: ('[REDACTED]' if v else 'EMPTY') if k in SECRET_SETTINGS else v
        for k, v in values.items()
    }


def load_settings(path=None):
    """Load settings.yaml merged over DEFAULT_SETTINGS, section by section."""
    path = path or SETTINGS_YAML
    stored = {}
    if os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as f:
            stored = yaml.safe_load(f) or {}
    merged = {}
    for section, defaults in DEFAULT_SETTINGS.items():
        merged[section] = {**defaults, **(stored.get(section) or {})}
    return merged


def save_settings_section(section, values, path=None):
    """Replace one settings section and persist the whole file."""
    if section not in DEFAULT_SETTINGS:
        raise KeyError(section)
    path = path or SETTINGS_YAML
    with _STORE_LOCK:
        settings = load_settings(path)
        settings[section] = {**DEFAULT_SETTINGS[section], **values}
        _write_yaml(path, settings)
    return settings[section]


# ── Export / import ──────────────────────────────────────────────

def _sanitize_cell(x):
    # Prefix formula-like strings so spreadsheet apps don't evaluate them
    if isinstance(x, str) and x.startswith(('=', '+', '-', '@')):
        return "'" + x
    return x


def _desanitize_cell(x):
    if isinstance(x, str) and x.startswith("'") and len(x) > 1 and x[1] in ['=', '+', '-', '@']:
        return x[1:]
    return x


def cards_to_frame(cards):
    """Flatten card documents into a DataFrame with EXPORT_COLS columns."""
    rows = []
    for card in cards:
        row = {k: v for k, v in card.items() if k not in ('condition', 'tags')}
        condition = card.get('condition') or {}
        for key in CONDITION_SCORES + ['overall']:
            row[f'condition_{key}'] = condition.get(key)
        row['tags'] = TAG_SEPARATOR.join(card.get('tags') or [])
        rows.append(row)
    return pd.DataFrame(rows, columns=EXPORT_COLS)


def export_cards(cards, fmt='csv'):
    """Serialise a collection for download.

    Returns:
        Tuple of (payload bytes, media type, file extension).
    """
    fmt = (fmt or 'csv').lower()
    if fmt == 'json':
        payload = json.dumps({'cards': cards}, indent=2, ensure_ascii=False)
        return payload.encode('utf-8'), 'application/json', 'json'
    if fmt != 'csv':
        raise ValueError(f"Unsupported export format: {fmt}")

    df = cards_to_frame(cards)
    object_cols = df.select_dtypes(include=['object']).columns
    for col in object_cols:
        df[col] = df[col].apply(_sanitize_cell)
    buf = io.StringIO()
    df.to_csv(buf, index=False)
    return buf.getvalue().encode('utf-8'), 'text/csv', 'csv'


def _parse_bool(val):
    if isinstance(val, bool):
        return val
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return False
    return str(val).strip().lower() in ('true', '1', 'yes', 'y')


def _row_to_card_data(row):
    """Rebuild a nested card dict from one flattened CSV row."""
    # numpy scalars → native Python values
    data = {k: (v.item() if hasattr(v, 'item') else v) for k, v in row.items()}
    data = {k: v for k, v in data.items() if not (isinstance(v, float) and math.isnan(v))}
    data = {k: _desanitize_cell(v) for k, v in data.items()}
    condition = {}
    for key in CONDITION_SCORES + ['overall']:
        col = f'condition_{key}'
        if col in data:
            condition[key] = data.pop(col)
    if condition:
        data['condition'] = condition
    tags = data.get('tags', '')
    data['tags'] = [t.strip() for t in str(tags).split(TAG_SEPARATOR) if t.strip()] if tags else []
    for col in BOOL_COLS:
        if col in data:
            data[col] = _parse_bool(data[col])
    for col in ('card_number', 'lot_number', 'notes'):
        if col in data and not isinstance(data[col], str):
            val = data[col]
            data[col] = str(int(val)) if isinstance(val, float) and val.is_integer() else str(val)
    return data


def _card_key(card):
    return (
        str(card.get('player_name', '')).strip().lower(),
        card.get('year'),
        str(card.get('set_name', '')).strip().lower(),
        str(card.get('card_number', '')).strip().lower(),
    )


def parse_import_file(content, filename):
    """Decode an uploaded CSV or JSON collection file into raw card dicts."""
    name = (filename or '').lower()
    text = content.decode('utf-8-sig')
    if name.endswith('.json'):
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get('cards', [])
        if not isinstance(data, list):
            raise ValueError("JSON import must be a list of cards or {\"cards\": [...]}")
        return data
    df = pd.read_csv(io.StringIO(text), dtype={'card_number': str, 'lot_number': str})
    df.columns = [c.strip() for c in df.columns]
    return [_row_to_card_data(r) for r in df.to_dict(orient='records')]


def import_cards(content, filename, user, cards_path):
    """Import cards from an uploaded file into a user's collection.

    Rows that fail validation are reported, not imported. Cards matching an
    existing card on player, year, set and number are skipped.

    Returns:
        Dict with 'added', 'skipped' and 'errors' (list of {'row', 'error'}).
    """
    raw_cards = parse_import_file(content, filename)
    existing = {_card_key(c) for c in load_cards(cards_path)}
    to_add, errors, skipped = [], [], 0
    for i, raw in enumerate(raw_cards, start=1):
        try:
            cleaned = validate_card(raw)
        except CardValidationError as e:
            errors.append({'row': i, 'error': str(e)})
            continue
        key = _card_key(cleaned)
        if key in existing:
            skipped += 1
            continue
        existing.add(key)
        to_add.append(cleaned)
    if to_add:
        create_cards(to_add, user, cards_path)
    logger.info(f"Imported {len(to_add)} cards for {user} ({skipped} skipped, {len(errors)} invalid)")
    return {'added': len(to_add), 'skipped': skipped, 'errors': errors}


# ── Backup & maintenance ─────────────────────────────────────────

def backup_data(paths, label="manual"):
    """Save timestamped copies of the card and wishlist stores to backups/."""
    backup_dir = paths['backup_dir']
    os.makedirs(backup_dir, exist_ok=True)
    timestamp = datetime.now().strftime('%Y-%m-%d_%H%M%S_%f')
    files = []
    with _STORE_LOCK:
        for key in ('cards', 'wishlist'):
            src = paths[key]
            if not os.path.exists(src):
                continue
            stem = os.path.splitext(os.path.basename(src))[0]
            dst = os.path.join(backup_dir, f"{stem}_{timestamp}_{label}.json")
            shutil.copy2(src, dst)
            files.append(os.path.basename(dst))
    return {'timestamp': timestamp, 'files': files}


def run_maintenance(paths):
    """Re-validate stored cards, dropping duplicates and unreadable documents.

    A backup is taken before anything is removed.
    """
    with _STORE_LOCK:
        cards = load_cards(paths['cards'])
        kept, seen_ids = [], set()
        duplicates = invalid = 0
        for card in cards:
            if not isinstance(card, dict) or not card.get('id'):
                invalid += 1
                continue
            if card['id'] in seen_ids:
                duplicates += 1
                continue
            try:
                validate_card(card)
            except CardValidationError as e:
                logger.warning(f"Dropping invalid card {card['id']}: {e}")
                invalid += 1
                continue
            seen_ids.add(card['id'])
            kept.append(card)

        backup = None
        if duplicates or invalid:
            backup = backup_data(paths, label="maintenance")
            save_cards(kept, paths['cards'])
    return {
        'checked':            len(cards),
        'kept':               len(kept),
        'removed_duplicates': duplicates,
        'removed_invalid':    invalid,
        'backup':             backup,
    }


def clear_cards(paths):
    """Back up and then empty a user's collection. Returns the number removed."""
    with _STORE_LOCK:
        cards = load_cards(paths['cards'])
        backup = backup_data(paths, label="clear-all") if cards else None
        save_cards([], paths['cards'])
    return {'removed': len(cards), 'backup': backup}
