#!/usr/bin/env python3
from __future__ import annotations

import json
import os
import random
import sqlite3
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from api.services.auth import hash_password
from api.services.database import SCHEMA, iso_z, utc_datetime
from api.services.orders import ORDER_STATUSES, calculate_totals, format_order_number, price_items

RANDOM_SEED = 42
DEMO_PASSWORD = "password123"
COMPANY_ID = "comp_001"
OTHER_COMPANY_ID = "comp_002"
ORDER_COUNT = 24

USERS = [
    ("usr_admin", "admin@buildco.example", "Dana Whitfield", "admin", COMPANY_ID),
    ("usr_manager", "manager@buildco.example", "Marcus Hale", "manager", COMPANY_ID),
    ("usr_manager2", "pm@buildco.example", "Priya Raman", "manager", COMPANY_ID),
    ("usr_sales", "sales@buildco.example", "Tom Becker", "sales", COMPANY_ID),
    ("usr_warehouse", "warehouse@buildco.example", "Luis Ortega", "warehouse", COMPANY_ID),
    ("usr_accounting", "accounting@buildco.example", "Grace Kim", "accounting", COMPANY_ID),
    ("usr_other_admin", "admin@otherco.example", "Sam Porter", "admin", OTHER_COMPANY_ID),
]

SUPPLIERS = [
    {
        "id": "sup_001",
        "name": "Carolina Lumber Supply",
        "email": "orders@carolinalumber.example",
        "reliability": 94,
        "price_competitiveness": 91,
        "on_time_delivery_rate": 0.95,
        "is_preferred": 1,
        "is_active": 1,
        "total_spend": 185000,
    },
    {
        "id": "sup_002",
        "name": "Piedmont Concrete & Masonry",
        "email": "sales@piedmontconcrete.example",
        "reliability": 80,
        "price_competitiveness": 86,
        "on_time_delivery_rate": 0.78,
        "is_preferred": 1,
        "is_active": 1,
        "total_spend": 92000,
    },
    {
        "id": "sup_003",
        "name": "Triangle Building Products",
        "email": "accounts@trianglebp.example",
        "reliability": 96,
        "price_competitiveness": 93,
        "on_time_delivery_rate": 0.97,
        "is_preferred": 0,
        "is_active": 1,
        "total_spend": 64000,
    },
    {
        "id": "sup_004",
        "name": "Coastal Fastener Co.",
        "email": "info@coastalfastener.example",
        "reliability": 70,
        "price_competitiveness": 88,
        "on_time_delivery_rate": 0.7,
        "is_preferred": 0,
        "is_active": 0,
        "total_spend": 8000,
    },
]

# (id, sku, name, category, subcategory, brand, cost, price, stock, reorder_point, reorder_quantity,
#  min_stock, max_stock, unit, location, supplier_id)
ITEMS = [
    ("item_lumber_2x4", "LUM-2X4-8", "2x4 Stud Lumber 8ft", "lumber", "dimensional", "SouthernPine",
     3.20, 4.99, 420, 200, 500, 50, 2000, "each", "Main Yard - A1", "sup_001"),
    ("item_concrete_mix", "CON-MIX-80", "Concrete Mix 80lb", "concrete", "bagged", "Quikrete",
     4.10, 6.50, 35, 100, 300, 0, 1500, "bag", "Warehouse B - C2", "sup_002"),
    ("item_rebar", "REB-4-20", "Rebar #4 20ft", "steel", "reinforcement", "Nucor",
     8.75, 12.90, 0, 80, 250, 0, 1000, "each", "Main Yard - D4", "sup_001"),
    ("item_shingles", "ROF-ARCH-BD", "Architectural Shingles Bundle", "roofing", "asphalt", "GAF",
     28.00, 39.50, 160, 60, 120, 20, 600, "bundle", "Warehouse A - R1", "sup_003"),
    ("item_drywall", "DRY-48-12", "Drywall Sheet 4x8 1/2in", "drywall", "gypsum", "USG",
     9.40, 13.75, 510, 150, 400, 50, 1500, "sheet", "Warehouse A - B3", "sup_001"),
    ("item_pvc", "PLB-PVC-2-10", "PVC Pipe 2in 10ft", "plumbing", "pipe", "Charlotte",
     5.60, 8.25, 90, 40, 150, 10, 400, "each", "Warehouse B - P1", "sup_002"),
    ("item_wire", "ELE-ROM-122", "Romex 12/2 250ft", "electrical", "wire", "Southwire",
     78.00, 109.00, 22, 25, 40, 5, 120, "roll", "Warehouse B - E2", "sup_003"),
    ("item_anchor", "HDW-ANC-12", "Anchor Bolt 1/2in", "hardware", "fasteners", "Simpson",
     0.85, 1.40, 1200, 300, 1000, 100, 5000, "each", "Warehouse A - H5", "sup_004"),
]

# item_id -> suppliers it was bought from in the last quarter
PURCHASE_SOURCES = {
    "item_lumber_2x4": ["sup_001"],
    "item_concrete_mix": ["sup_002", "sup_003"],
    "item_rebar": ["sup_001", "sup_003"],
    "item_shingles": ["sup_003"],
    "item_drywall": ["sup_001"],
    "item_pvc": ["sup_002"],
    "item_wire": ["sup_003"],
    "item_anchor": ["sup_004"],
}

CUSTOMERS = [
    {
        "id": "cust_001",
        "name": "Oakridge Homes",
        "email": "purchasing@oakridgehomes.example",
        "phone": "+1-919-555-0141",
        "company": "Oakridge Homes LLC",
        "customer_type": "Business",
        "status": "active",
        "credit_limit": 50000,
        "current_balance": 12500.5,
        "tags": ["residential", "priority"],
        "billing_address": {"street": "1800 Oakridge Pkwy", "city": "Cary", "state": "NC", "zip_code": "27513"},
        "company_id": COMPANY_ID,
    },
    {
        "id": "cust_002",
        "name": "Summit Commercial Builders",
        "email": "ap@summitcb.example",
        "phone": "+1-919-555-0178",
        "company": "Summit Commercial Builders Inc",
        "customer_type": "Contractor",
        "status": "active",
        "credit_limit": 120000,
        "current_balance": 0,
        "tags": ["commercial"],
        "billing_address": {"street": "410 Summit Ave", "city": "Raleigh", "state": "NC", "zip_code": "27601"},
        "company_id": COMPANY_ID,
    },
    {
        "id": "cust_003",
        "name": "Riverside Remodeling",
        "email": "office@riversideremodel.example",
        "phone": "+1-919-555-0112",
        "company": "Riverside Remodeling",
        "customer_type": "Contractor",
        "status": "at_risk",
        "credit_limit": 15000,
        "current_balance": 2400,
        "tags": ["residential", "remodel"],
        "billing_address": {"street": "22 Riverside Dr", "city": "Durham", "state": "NC", "zip_code": "27701"},
        "company_id": COMPANY_ID,
    },
    {
        "id": "cust_004",
        "name": "Hillcrest Property Group",
        "email": "facilities@hillcrestpg.example",
        "phone": "+1-919-555-0190",
        "company": "Hillcrest Property Group",
        "customer_type": "Business",
        "status": "on_hold",
        "credit_limit": 40000,
        "current_balance": 0,
        "tags": ["commercial", "retail"],
        "billing_address": {"street": "905 Hillcrest Rd", "city": "Apex", "state": "NC", "zip_code": "27502"},
        "company_id": COMPANY_ID,
    },
    {
        "id": "cust_101",
        "name": "Porter Framing",
        "email": "jobs@porterframing.example",
        "phone": "+1-336-555-0104",
        "company": None,
        "customer_type": "Individual",
        "status": "active",
        "credit_limit": 5000,
        "current_balance": 800,
        "tags": ["framing"],
        "billing_address": {"street": "77 Mill St", "city": "Greensboro", "state": "NC", "zip_code": "27401"},
        "company_id": OTHER_COMPANY_ID,
    },
]
ORDER_CUSTOMERS = [customer for customer in CUSTOMERS if customer["company_id"] == COMPANY_ID]

PROJECTS = [
    ("proj_oakridge", "Oakridge Phase 3 Townhomes", "in-progress", 2_450_000, "usr_manager", "Oakridge Homes",
     {"address": "1800 Oakridge Pkwy", "city": "Cary", "state": "NC"}),
    ("proj_summit", "Summit Medical Office Shell", "planning", 3_900_000, "usr_manager", "Summit Commercial Builders",
     {"address": "410 Summit Ave", "city": "Raleigh", "state": "NC"}),
    ("proj_riverside", "Riverside Kitchen Renovations", "completed", 185_000, "usr_manager2", "Riverside Remodeling",
     {"address": "22 Riverside Dr", "city": "Durham", "state": "NC"}),
    ("proj_hillcrest", "Hillcrest Retail Fit-Out", "on-hold", 640_000, "usr_manager2", "Hillcrest Property Group",
     {"address": "905 Hillcrest Rd", "city": "Apex", "state": "NC"}),
]

CONTRACTS = [
    {
        "id": "ctr_001",
        "supplier_id": "sup_002",
        "title": "Concrete Supply Agreement 2026",
        "contract_type": "supply",
        "document_path": "contracts/ctr_001.pdf",
        "contract_text": None,
        "monthly_value": 7600,
        "term_days": 365,
    },
    {
        "id": "ctr_002",
        "supplier_id": "sup_001",
        "title": "Lumber Master Supply Agreement",
        "contract_type": "supply",
        "document_path": None,
        "contract_text": (
            "Master supply agreement between BuildCo and Carolina Lumber Supply. "
            "Pricing is fixed for 12 months with a 4% annual escalator. Delivery within 5 business days. "
            "Late deliveries incur a 1% credit per day. Either party may terminate with 60 days notice. "
            "Auto-renews for successive one-year terms unless notice is given 90 days before expiry."
        ),
        "monthly_value": 15400,
        "term_days": 540,
    },
]

CONTRACT_CLAUSES = [
    ("1. Term", "Twelve (12) months from the effective date, renewing automatically for one-year terms."),
    ("2. Pricing", "Unit pricing per the attached schedule. Supplier may adjust pricing with 30 days notice."),
    ("3. Minimum Volume", "Buyer commits to a minimum of 1,500 bags per month or pays a shortfall fee."),
    ("4. Delivery", "Deliveries within 72 hours of order. No credits are owed for late delivery."),
    ("5. Liability", "Supplier liability is limited to the value of the affected delivery."),
    ("6. Termination", "Buyer may terminate for convenience with 120 days written notice."),
    ("7. Insurance", "Supplier maintains general liability coverage of $1,000,000 per occurrence."),
]


def _resolve(configured: Optional[str], default: Path) -> Path:
    if not configured:
        return default
    path = Path(configured)
    if not path.is_absolute():
        path = BASE_DIR / path
    return path


def db_path() -> Path:
    return _resolve(os.getenv("DATABASE_PATH"), BASE_DIR / "data" / "erp.db")


def data_dir() -> Path:
    return _resolve(os.getenv("DATA_DIR"), BASE_DIR / "data")


def ensure_dirs() -> None:
    (data_dir() / "contracts").mkdir(parents=True, exist_ok=True)
    db_path().parent.mkdir(parents=True, exist_ok=True)


def seed_users(conn: sqlite3.Connection, now: str) -> None:
    password_hash = hash_password(DEMO_PASSWORD)
    conn.executemany(
        """
        INSERT INTO users (id, email, name, password_hash, role, company_id, is_active, created_at)
        VALUES (?, ?, ?, ?, ?, ?, 1, ?)
        """,
        [(user_id, email, name, password_hash, role, company, now) for user_id, email, name, role, company in USERS],
    )


def seed_catalog(conn: sqlite3.Connection, now: str) -> None:
    conn.executemany(
        """
        INSERT INTO suppliers (id, name, email, company_id, reliability, price_competitiveness,
                               on_time_delivery_rate, is_preferred, is_active, total_spend)
        VALUES (:id, :name, :email, :company_id, :reliability, :price_competitiveness,
                :on_time_delivery_rate, :is_preferred, :is_active, :total_spend)
        """,
        [{**supplier, "company_id": COMPANY_ID} for supplier in SUPPLIERS],
    )
    conn.executemany(
        """
        INSERT INTO inventory_items (id, sku, name, description, category, subcategory, brand, price, cost, stock,
                                     reserved_stock, reorder_point, reorder_quantity, min_stock, max_stock, unit,
                                     location, supplier_id, tags, is_active, is_tracked, company_id,
                                     created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?, ?, 1, 1, ?, ?, ?)
        """,
        [
            (
                item_id, sku, name, f"{brand} {name}", category, subcategory, brand, price, cost, stock,
                reorder_point, reorder_quantity, min_stock, max_stock, unit, json.dumps(location), supplier_id,
                json.dumps([category, subcategory]), COMPANY_ID, now, now,
            )
            for (item_id, sku, name, category, subcategory, brand, cost, price, stock, reorder_point,
                 reorder_quantity, min_stock, max_stock, unit, location, supplier_id) in ITEMS
        ],
    )


def seed_projects(conn: sqlite3.Connection, today: datetime, now: str) -> None:
    for index, (project_id, name, status, budget, manager_id, client, location) in enumerate(PROJECTS):
        start = today - timedelta(days=120 - index * 25)
        conn.execute(
            """
            INSERT INTO projects (id, name, description, status, budget, start_date, end_date, manager_id,
                                  client_name, location, company_id, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            """,
            (
                project_id, name, f"{name} for {client}", status, budget, start.date().isoformat(),
                (start + timedelta(days=300)).date().isoformat(), manager_id, client, json.dumps(location),
                COMPANY_ID, now, now,
            ),
        )


def seed_customers(conn: sqlite3.Connection, now: str) -> None:
    conn.executemany(
        """
        INSERT INTO customers (id, name, email, phone, company, customer_type, status, credit_limit, current_balance,
                               payment_terms, preferred_contact, tags, billing_address, is_active, company_id,
                               created_at, updated_at)
        VALUES (:id, :name, :email, :phone, :company, :customer_type, :status, :credit_limit, :current_balance,
                'Net 30', 'Email', :tags, :billing_address, :is_active, :company_id, :created_at, :updated_at)
        """,
        [
            {
                **customer,
                "tags": json.dumps(customer["tags"]),
                "billing_address": json.dumps(customer["billing_address"]),
                "is_active": int(customer["status"] != "inactive"),
                "created_at": now,
                "updated_at": now,
            }
            for customer in CUSTOMERS
        ],
    )


def seed_orders(conn: sqlite3.Connection, today: datetime) -> None:
    prices = {item[0]: (item[2], item[1], item[7]) for item in ITEMS}
    product_ids = sorted(prices)
    for index in range(ORDER_COUNT):
        order_date = today - timedelta(days=84 - index * 3 - random.randint(0, 2))
        lines = []
        for product_id in random.sample(product_ids, k=random.randint(1, 3)):
            name, sku, price = prices[product_id]
            lines.append(
                {
                    "product_id": product_id,
                    "product_name": name,
                    "sku": sku,
                    "quantity": random.choice([5, 10, 20, 40, 60]),
                    "unit_price": price,
                    "discount": random.choice([0, 0, 5, 10]),
                }
            )
        items = price_items(lines)
        totals = calculate_totals(items, tax_rate=7.25, shipping_cost=random.choice([0, 45, 120]))
        customer = ORDER_CUSTOMERS[index % len(ORDER_CUSTOMERS)]
        customer_id, customer_name = customer["id"], customer["name"]
        status = ORDER_STATUSES[min(index % 7, len(ORDER_STATUSES) - 1)]
        stamp = iso_z(order_date)
        conn.execute(
            """
            INSERT INTO orders (id, order_number, customer_id, customer_name, status, order_date, required_date,
                                shipped_date, delivered_date, items, subtotal, tax_rate, tax_amount, shipping_cost,
                                total_amount, payment_status, payment_terms, priority, notes, sales_rep_id,
                                company_id, created_at, updated_at)
            VALUES (:id, :order_number, :customer_id, :customer_name, :status, :order_date, :required_date,
                    :shipped_date, :delivered_date, :items, :subtotal, :tax_rate, :tax_amount, :shipping_cost,
                    :total_amount, :payment_status, :payment_terms, :priority, :notes, :sales_rep_id,
                    :company_id, :created_at, :updated_at)
            """,
            {
                **totals,
                "id": f"ord_{index + 1:04d}",
                "order_number": format_order_number(index + 1),
                "customer_id": customer_id,
                "customer_name": customer_name,
                "status": status,
                "order_date": stamp,
                "required_date": iso_z(order_date + timedelta(days=10)),
                "shipped_date": stamp if status in ("SHIPPED", "DELIVERED") else None,
                "delivered_date": stamp if status == "DELIVERED" else None,
                "items": json.dumps(items),
                "payment_status": "PAID" if status == "DELIVERED" else "PENDING",
                "payment_terms": "Net 30",
                "priority": "HIGH" if index % 5 == 0 else "NORMAL",
                "notes": f"Deliver to jobsite for {customer_name}",
                "sales_rep_id": "usr_sales",
                "company_id": COMPANY_ID,
                "created_at": stamp,
                "updated_at": stamp,
            },
        )


def seed_purchases(conn: sqlite3.Connection, today: datetime) -> None:
    costs = {item[0]: item[6] for item in ITEMS}
    reliability = {supplier["id"]: supplier["on_time_delivery_rate"] for supplier in SUPPLIERS}
    for item_id, supplier_ids in PURCHASE_SOURCES.items():
        for offset, supplier_id in enumerate(supplier_ids):
            for batch in range(3):
                purchased_at = today - timedelta(days=75 - batch * 25 - offset * 4)
                conn.execute(
                    """
                    INSERT INTO purchases (item_id, supplier_id, quantity, unit_price, delivered_on_time, purchased_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item_id,
                        supplier_id,
                        random.choice([50, 100, 150, 200]),
                        round(costs[item_id] * (1 + offset * 0.06 + random.uniform(-0.02, 0.02)), 2),
                        int(random.random() < reliability[supplier_id]),
                        iso_z(purchased_at),
                    ),
                )


def seed_contracts(conn: sqlite3.Connection, today: datetime, now: str) -> None:
    for contract in CONTRACTS:
        start = today - timedelta(days=60)
        conn.execute(
            """
            INSERT INTO contracts (id, supplier_id, title, contract_type, document_path, contract_text,
                                   monthly_value, start_date, end_date, status, company_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, ?)
            """,
            (
                contract["id"], contract["supplier_id"], contract["title"], contract["contract_type"],
                contract["document_path"], contract["contract_text"], contract["monthly_value"],
                start.date().isoformat(), (start + timedelta(days=contract["term_days"])).date().isoformat(),
                COMPANY_ID, now,
            ),
        )


def render_contract_pdf(contract: dict[str, Any], supplier_name: str) -> Path:
    target = data_dir() / contract["document_path"]
    target.parent.mkdir(parents=True, exist_ok=True)
    c = canvas.Canvas(str(target), pagesize=LETTER)
    width, height = LETTER

    c.setFont("Helvetica-Bold", 16)
    c.drawString(0.75 * inch, height - 0.85 * inch, contract["title"])
    c.setFont("Helvetica", 10)
    c.drawString(0.75 * inch, height - 1.15 * inch, f"Supplier: {supplier_name}")
    c.drawString(0.75 * inch, height - 1.33 * inch, "Buyer: BuildCo Construction, 4200 Westgate Blvd, Raleigh, NC")
    c.drawRightString(width - 0.75 * inch, height - 0.85 * inch, f"Contract #: {contract['id'].upper()}")
    c.drawRightString(width - 0.75 * inch, height - 1.03 * inch, f"Monthly value: ${contract['monthly_value']:,.2f}")

    c.setStrokeColor(colors.HexColor("#1f2937"))
    c.setLineWidth(1)
    c.line(0.75 * inch, height - 1.55 * inch, width - 0.75 * inch, height - 1.55 * inch)

    y = height - 1.95 * inch
    for heading, body in CONTRACT_CLAUSES:
        c.setFont("Helvetica-Bold", 10)
        c.drawString(0.75 * inch, y, heading)
        c.setFont("Helvetica", 9.5)
        c.drawString(0.95 * inch, y - 0.2 * inch, body)
        y -= 0.55 * inch

    c.setFont("Helvetica", 9)
    c.drawString(0.75 * inch, 0.95 * inch, "Signed on behalf of both parties as of the effective date.")
    c.showPage()
    c.save()
    return target


def generate_contract_pdfs() -> None:
    names = {supplier["id"]: supplier["name"] for supplier in SUPPLIERS}
    for contract in CONTRACTS:
        if contract["document_path"]:
            render_contract_pdf(contract, names[contract["supplier_id"]])


def seed_database(conn: sqlite3.Connection) -> None:
    random.seed(RANDOM_SEED)
    conn.executescript(SCHEMA)
    today = utc_datetime().replace(microsecond=0)
    now = iso_z(today)
    seed_users(conn, now)
    seed_catalog(conn, now)
    seed_projects(conn, today, now)
    seed_customers(conn, now)
    seed_orders(conn, today)
    seed_purchases(conn, today)
    seed_contracts(conn, today, now)


def run_integrity_checks(conn: sqlite3.Connection) -> None:
    checks = {
        "item_supplier_fk": (
            "SELECT COUNT(*) FROM inventory_items i LEFT JOIN suppliers s ON i.supplier_id = s.id "
            "WHERE i.supplier_id IS NOT NULL AND s.id IS NULL"
        ),
        "purchase_supplier_fk": "SELECT COUNT(*) FROM purchases p LEFT JOIN suppliers s ON p.supplier_id = s.id WHERE s.id IS NULL",
        "purchase_item_fk": "SELECT COUNT(*) FROM purchases p LEFT JOIN inventory_items i ON p.item_id = i.id WHERE i.id IS NULL",
        "order_customer_fk": "SELECT COUNT(*) FROM orders o LEFT JOIN customers c ON o.customer_id = c.id WHERE c.id IS NULL",
        "contract_supplier_fk": "SELECT COUNT(*) FROM contracts c LEFT JOIN suppliers s ON c.supplier_id = s.id WHERE s.id IS NULL",
        "project_manager_fk": "SELECT COUNT(*) FROM projects p LEFT JOIN users u ON p.manager_id = u.id WHERE u.id IS NULL",
        "negative_stock": "SELECT COUNT(*) FROM inventory_items WHERE stock < 0 OR reserved_stock > stock",
        "order_totals": (
            "SELECT COUNT(*) FROM orders WHERE ABS(subtotal + tax_amount + shipping_cost - total_amount) > 0.011"
        ),
    }

    failures = []
    for name, query in checks.items():
        count = conn.execute(query).fetchone()[0]
        if count != 0:
            failures.append(f"{name} ({count})")

    known_products = {row[0] for row in conn.execute("SELECT id FROM inventory_items").fetchall()}
    for order_number, items in conn.execute("SELECT order_number, items FROM orders").fetchall():
        unknown = {line["product_id"] for line in json.loads(items)} - known_products
        if unknown:
            failures.append(f"order {order_number} references unknown products {sorted(unknown)}")

    companies_without_admin = conn.execute(
        """
        SELECT COUNT(DISTINCT company_id) FROM users
        WHERE company_id NOT IN (SELECT company_id FROM users WHERE role = 'admin')
        """
    ).fetchone()[0]
    if companies_without_admin:
        failures.append("companies without an admin user")

    for contract in CONTRACTS:
        if contract["document_path"] and not (data_dir() / contract["document_path"]).exists():
            failures.append(f"missing contract document {contract['document_path']}")

    if failures:
        raise RuntimeError("Integrity checks failed: " + "; ".join(failures))


def main() -> None:
    ensure_dirs()
    database_path = db_path()
    if database_path.exists():
        database_path.unlink()

    conn = sqlite3.connect(database_path)
    conn.row_factory = sqlite3.Row

    try:
        seed_database(conn)
        generate_contract_pdfs()
        conn.commit()
        run_integrity_checks(conn)
    finally:
        conn.close()

    print(f"Reset complete: {database_path}")
    print(f"- {len(USERS)} users (password: {DEMO_PASSWORD}), {len(SUPPLIERS)} suppliers, {len(ITEMS)} inventory items")
    print(f"- {len(PROJECTS)} projects, {len(CUSTOMERS)} customers, {ORDER_COUNT} orders, {len(CONTRACTS)} contracts seeded")
    print("- Contract PDFs generated")


if __name__ == "__main__":
    main()
