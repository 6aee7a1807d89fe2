from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import aiosqlite

from api.services.config import get_settings

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    company_id TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL,
    budget REAL NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT,
    manager_id TEXT NOT NULL,
    client_name TEXT NOT NULL,
    location TEXT NOT NULL,
    company_id TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS suppliers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    company_id TEXT,
    reliability REAL NOT NULL DEFAULT 90,
    price_competitiveness REAL NOT NULL DEFAULT 90,
    on_time_delivery_rate REAL NOT NULL DEFAULT 0.9,
    is_preferred INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    total_spend REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS inventory_items (
    id TEXT PRIMARY KEY,
    sku TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT,
    category TEXT NOT NULL,
    subcategory TEXT,
    brand TEXT,
    price REAL NOT NULL DEFAULT 0,
    cost REAL NOT NULL DEFAULT 0,
    stock INTEGER NOT NULL DEFAULT 0,
    reserved_stock INTEGER NOT NULL DEFAULT 0,
    reorder_point INTEGER NOT NULL DEFAULT 0,
    reorder_quantity INTEGER NOT NULL DEFAULT 0,
    max_stock INTEGER,
    min_stock INTEGER,
    unit TEXT NOT NULL DEFAULT 'each',
    location TEXT,
    supplier_id TEXT REFERENCES suppliers(id),
    tags TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    is_tracked INTEGER NOT NULL DEFAULT 1,
    company_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS inventory_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL REFERENCES inventory_items(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    previous_stock INTEGER NOT NULL,
    new_stock INTEGER NOT NULL,
    reason TEXT NOT NULL,
    user_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS customers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    company TEXT,
    tax_id TEXT,
    customer_type TEXT NOT NULL DEFAULT 'Individual',
    status TEXT NOT NULL DEFAULT 'active',
    credit_limit REAL NOT NULL DEFAULT 0,
    current_balance REAL NOT NULL DEFAULT 0,
    payment_terms TEXT NOT NULL DEFAULT 'Net 30',
    preferred_contact TEXT NOT NULL DEFAULT 'Email',
    tags TEXT NOT NULL DEFAULT '[]',
    notes TEXT,
    billing_address TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    company_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    order_number TEXT NOT NULL UNIQUE,
    customer_id TEXT NOT NULL,
    customer_name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    order_date TEXT NOT NULL,
    required_date TEXT,
    shipped_date TEXT,
    delivered_date TEXT,
    items TEXT NOT NULL DEFAULT '[]',
    subtotal REAL NOT NULL DEFAULT 0,
    tax_rate REAL NOT NULL DEFAULT 0,
    tax_amount REAL NOT NULL DEFAULT 0,
    shipping_cost REAL NOT NULL DEFAULT 0,
    total_amount REAL NOT NULL DEFAULT 0,
    payment_status TEXT NOT NULL DEFAULT 'PENDING',
    payment_terms TEXT,
    priority TEXT NOT NULL DEFAULT 'NORMAL',
    notes TEXT,
    sales_rep_id TEXT,
    company_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS purchases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL REFERENCES inventory_items(id) ON DELETE CASCADE,
    supplier_id TEXT NOT NULL REFERENCES suppliers(id),
    quantity INTEGER NOT NULL,
    unit_price REAL NOT NULL,
    delivered_on_time INTEGER NOT NULL DEFAULT 1,
    purchased_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS purchase_orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number TEXT NOT NULL UNIQUE,
    item_id TEXT,
    supplier_id TEXT,
    quantity INTEGER NOT NULL,
    unit_cost REAL NOT NULL DEFAULT 0,
    estimated_cost REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'draft',
    source TEXT NOT NULL,
    expected_delivery TEXT,
    company_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contracts (
    id TEXT PRIMARY KEY,
    supplier_id TEXT REFERENCES suppliers(id),
    title TEXT NOT NULL,
    contract_type TEXT NOT NULL DEFAULT 'supply',
    document_path TEXT,
    contract_text TEXT,
    monthly_value REAL NOT NULL DEFAULT 0,
    start_date TEXT,
    end_date TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    company_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contract_analyses (
    contract_id TEXT PRIMARY KEY REFERENCES contracts(id) ON DELETE CASCADE,
    payload TEXT NOT NULL,
    risk_score REAL NOT NULL,
    confidence REAL NOT NULL,
    analyzed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contract_metrics (
    contract_id TEXT PRIMARY KEY REFERENCES contracts(id) ON DELETE CASCADE,
    payload TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS negotiations (
    contract_id TEXT PRIMARY KEY REFERENCES contracts(id) ON DELETE CASCADE,
    payload TEXT NOT NULL,
    status TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS security_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    success INTEGER NOT NULL DEFAULT 1,
    ip_address TEXT NOT NULL,
    user_agent TEXT NOT NULL DEFAULT '',
    location TEXT,
    device TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    flagged_as_anomaly INTEGER NOT NULL DEFAULT 0,
    occurred_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS risk_assessments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    overall_risk TEXT NOT NULL,
    risk_score REAL NOT NULL,
    payload TEXT NOT NULL,
    assessed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS communications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT,
    recipient TEXT NOT NULL,
    subject TEXT NOT NULL,
    body TEXT NOT NULL,
    channel TEXT NOT NULL DEFAULT 'email',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS internal_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    assignee TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    due_date TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'info',
    category TEXT,
    company_id TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_order_date ON orders(order_date);
CREATE INDEX IF NOT EXISTS idx_orders_customer ON orders(customer_id);
CREATE INDEX IF NOT EXISTS idx_purchases_item ON purchases(item_id, purchased_at);
CREATE INDEX IF NOT EXISTS idx_security_events_user ON security_events(user_id, occurred_at);
"""

# Columns stored as JSON text, decoded on read.
JSON_COLUMNS = {"tags", "items", "payload", "location", "device", "metadata", "billing_address"}


def utc_datetime() -> datetime:
    return datetime.now(timezone.utc)


def iso_z(moment: datetime) -> str:
    """Render ``moment`` as second-precision UTC with a ``Z`` suffix."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0).isoformat() + "Z"


def utc_now() -> str:
    return iso_z(utc_datetime())


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse stored ISO timestamps (``...Z``, offsets or bare dates) into aware UTC datetimes."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


async def connect_db() -> aiosqlite.Connection:
    settings = get_settings()
    path = settings.resolved_database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    return conn


async def init_db() -> None:
    conn = await connect_db()
    try:
        await conn.executescript(SCHEMA)
        await conn.commit()
    finally:
        await conn.close()


async def fetchall(conn, query: str, params: tuple[Any, ...] = ()) -> list[Any]:
    cursor = await conn.execute(query, params)
    return await cursor.fetchall()


async def fetchone(conn, query: str, params: tuple[Any, ...] = ()) -> Optional[Any]:
    cursor = await conn.execute(query, params)
    return await cursor.fetchone()


def row_to_dict(row: Any) -> dict[str, Any]:
    data = dict(row)
    for key in JSON_COLUMNS.intersection(data):
        value = data[key]
        if isinstance(value, str):
            data[key] = json.loads(value)
    for key in ("is_active", "is_tracked", "is_preferred", "success", "flagged_as_anomaly", "delivered_on_time"):
        if key in data and data[key] is not None:
            data[key] = bool(data[key])
    return data


def rows_to_dicts(rows: Iterable[Any]) -> list[dict[str, Any]]:
    return [row_to_dict(row) for row in rows]


def encode_params(values: dict[str, Any]) -> dict[str, Any]:
    """Serialize JSON-shaped values and booleans for an sqlite insert/update."""
    encoded: dict[str, Any] = {}
    for key, value in values.items():
        if key in JSON_COLUMNS and value is not None:
            encoded[key] = dumps(value)
        elif isinstance(value, bool):
            encoded[key] = int(value)
        else:
            encoded[key] = value
    return encoded


async def insert_row(conn, table: str, values: dict[str, Any]) -> int:
    encoded = encode_params(values)
    columns = ", ".join(encoded)
    placeholders = ", ".join(f":{key}" for key in encoded)
    cursor = await conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", encoded)
    return cursor.lastrowid


async def update_row(conn, table: str, key_column: str, key: Any, values: dict[str, Any]) -> None:
    if not values:
        return
    encoded = encode_params(values)
    assignments = ", ".join(f"{column} = :{column}" for column in encoded)
    encoded["_key"] = key
    await conn.execute(f"UPDATE {table} SET {assignments} WHERE {key_column} = :_key", encoded)
