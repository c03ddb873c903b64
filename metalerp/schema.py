SCHEMA_SQL = r"""
-- Company profile (single row)
CREATE TABLE IF NOT EXISTS company_profile (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  company_name TEXT NOT NULL DEFAULT 'Metal Sheets Company',
  address TEXT,
  phone1 TEXT,
  email TEXT,
  tax_number TEXT,
  base_currency TEXT NOT NULL DEFAULT 'USD',
  default_payment_method TEXT NOT NULL DEFAULT 'Cash',
  vat_rate REAL NOT NULL DEFAULT 0,
  vat_enabled INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT
);

-- Currencies: exchange_rate = value of one unit in base currency
CREATE TABLE IF NOT EXISTS currencies (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  code TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  symbol TEXT NOT NULL,
  exchange_rate REAL NOT NULL DEFAULT 1.0,
  is_active INTEGER NOT NULL DEFAULT 1,
  updated_at TEXT
);

CREATE TABLE IF NOT EXISTS payment_methods (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  is_active INTEGER NOT NULL DEFAULT 1
);

-- Catalog
CREATE TABLE IF NOT EXISTS metal_types (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  abbreviation TEXT NOT NULL UNIQUE,
  density REAL,                          -- g/cm3
  is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS grades (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  metal_type_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1,
  UNIQUE (metal_type_id, name),
  FOREIGN KEY (metal_type_id) REFERENCES metal_types(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS finishes (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  metal_type_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1,
  UNIQUE (metal_type_id, name),
  FOREIGN KEY (metal_type_id) REFERENCES metal_types(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS service_types (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  default_cost REAL NOT NULL DEFAULT 0,
  is_active INTEGER NOT NULL DEFAULT 1
);

-- Parties
CREATE TABLE IF NOT EXISTS customers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  company_name TEXT,
  phone1 TEXT,
  address TEXT,
  email TEXT,
  notes TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT
);

CREATE TABLE IF NOT EXISTS suppliers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  company_name TEXT,
  phone1 TEXT,
  address TEXT,
  email TEXT,
  notes TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT
);

-- Sheets (one material definition; remnants link to a parent)
CREATE TABLE IF NOT EXISTS sheets (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  code TEXT NOT NULL UNIQUE,
  metal_type_id INTEGER NOT NULL,
  grade_id INTEGER,
  finish_id INTEGER,
  length_mm REAL NOT NULL,
  width_mm REAL NOT NULL,
  thickness_mm REAL NOT NULL,
  weight_per_sheet_kg REAL,
  is_remnant INTEGER NOT NULL DEFAULT 0,
  parent_sheet_id INTEGER,
  created_at TEXT,
  FOREIGN KEY (metal_type_id) REFERENCES metal_types(id),
  FOREIGN KEY (grade_id) REFERENCES grades(id),
  FOREIGN KEY (finish_id) REFERENCES finishes(id),
  FOREIGN KEY (parent_sheet_id) REFERENCES sheets(id)
);

-- Batches (one purchase lot of a sheet)
CREATE TABLE IF NOT EXISTS batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sheet_id INTEGER NOT NULL,
  supplier_id INTEGER,
  quantity_original REAL NOT NULL,
  quantity_remaining REAL NOT NULL,
  price_per_kg REAL,
  total_cost REAL,
  storage_location TEXT,
  received_date TEXT NOT NULL,           -- ISO date
  notes TEXT,
  created_at TEXT,
  CHECK (quantity_remaining >= 0 AND quantity_remaining <= quantity_original),
  FOREIGN KEY (sheet_id) REFERENCES sheets(id),
  FOREIGN KEY (supplier_id) REFERENCES suppliers(id)
);

-- Movement audit trail; batch_id is kept as a plain reference so pruning
-- a batch never rewrites history.
CREATE TABLE IF NOT EXISTS inventory_movements (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  movement_type TEXT NOT NULL,           -- IN / OUT
  sheet_id INTEGER NOT NULL,
  batch_id INTEGER,
  quantity REAL NOT NULL,
  reference_type TEXT,                   -- purchase / sale / remnant ...
  reference_id INTEGER,
  notes TEXT,
  created_at TEXT,
  FOREIGN KEY (sheet_id) REFERENCES sheets(id)
);

-- Sales
CREATE TABLE IF NOT EXISTS sales (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  invoice_number TEXT NOT NULL UNIQUE,
  customer_id INTEGER,
  sale_date TEXT NOT NULL,
  currency_code TEXT NOT NULL,
  fx_rate REAL NOT NULL DEFAULT 1.0,
  subtotal REAL NOT NULL,
  discount REAL NOT NULL DEFAULT 0,
  tax REAL NOT NULL DEFAULT 0,
  total_amount REAL NOT NULL,
  payment_status TEXT NOT NULL DEFAULT 'unpaid',   -- unpaid / partial / paid
  notes TEXT,
  created_at TEXT,
  FOREIGN KEY (customer_id) REFERENCES customers(id)
);

CREATE TABLE IF NOT EXISTS sale_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sale_id INTEGER NOT NULL,
  item_type TEXT NOT NULL DEFAULT 'material',      -- material / service
  sheet_id INTEGER,
  batch_id INTEGER,
  quantity_sold REAL NOT NULL,
  unit_price REAL,
  total_price REAL NOT NULL,
  sold_dimensions TEXT,
  sold_weight REAL,
  is_custom_size INTEGER NOT NULL DEFAULT 0,
  cogs_per_unit REAL,
  cogs_total REAL,
  service_type_id INTEGER,
  service_price REAL,
  service_cost REAL,
  service_cost_total REAL,
  material_description TEXT,
  notes TEXT,
  FOREIGN KEY (sale_id) REFERENCES sales(id),
  FOREIGN KEY (sheet_id) REFERENCES sheets(id),
  FOREIGN KEY (batch_id) REFERENCES batches(id),
  FOREIGN KEY (service_type_id) REFERENCES service_types(id)
);

CREATE TABLE IF NOT EXISTS payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sale_id INTEGER NOT NULL,
  customer_id INTEGER,
  amount REAL NOT NULL,
  payment_method TEXT NOT NULL,
  payment_date TEXT NOT NULL,
  notes TEXT,
  FOREIGN KEY (sale_id) REFERENCES sales(id),
  FOREIGN KEY (customer_id) REFERENCES customers(id)
);

CREATE TABLE IF NOT EXISTS supplier_payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  supplier_id INTEGER NOT NULL,
  batch_id INTEGER,
  amount REAL NOT NULL,
  payment_method TEXT,
  payment_date TEXT NOT NULL,
  notes TEXT,
  FOREIGN KEY (supplier_id) REFERENCES suppliers(id),
  FOREIGN KEY (batch_id) REFERENCES batches(id)
);

-- Append-only ledgers; balance_after is the running balance at write time
CREATE TABLE IF NOT EXISTS customer_transactions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  customer_id INTEGER NOT NULL,
  transaction_type TEXT NOT NULL,        -- sale / payment / adjustment
  amount REAL NOT NULL,
  reference_type TEXT,
  reference_id INTEGER,
  balance_after REAL NOT NULL,
  notes TEXT,
  transaction_date TEXT NOT NULL,
  created_at TEXT,
  FOREIGN KEY (customer_id) REFERENCES customers(id)
);

CREATE TABLE IF NOT EXISTS supplier_transactions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  supplier_id INTEGER NOT NULL,
  transaction_type TEXT NOT NULL,        -- purchase / payment / adjustment
  amount REAL NOT NULL,
  reference_type TEXT,
  reference_id INTEGER,
  balance_after REAL NOT NULL,
  notes TEXT,
  transaction_date TEXT NOT NULL,
  created_at TEXT,
  FOREIGN KEY (supplier_id) REFERENCES suppliers(id)
);

-- Expenses
CREATE TABLE IF NOT EXISTS expense_categories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS expenses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  category_id INTEGER NOT NULL,
  amount REAL NOT NULL,
  description TEXT NOT NULL,
  expense_date TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',          -- pending / approved / rejected
  decided_by TEXT,
  decided_at TEXT,
  decision_notes TEXT,
  notes TEXT,
  created_at TEXT,
  FOREIGN KEY (category_id) REFERENCES expense_categories(id) ON DELETE RESTRICT
);
"""

IMMUTABILITY_SQL = r"""
CREATE TRIGGER IF NOT EXISTS trg_customer_transactions_no_update
BEFORE UPDATE ON customer_transactions
BEGIN
  SELECT RAISE(ABORT, 'customer_transactions rows are immutable');
END;

CREATE TRIGGER IF NOT EXISTS trg_supplier_transactions_no_update
BEFORE UPDATE ON supplier_transactions
BEGIN
  SELECT RAISE(ABORT, 'supplier_transactions rows are immutable');
END;

CREATE TRIGGER IF NOT EXISTS trg_inventory_movements_no_update
BEFORE UPDATE ON inventory_movements
BEGIN
  SELECT RAISE(ABORT, 'inventory_movements rows are immutable');
END;
"""

INDEXES_SQL = r"""
CREATE INDEX IF NOT EXISTS idx_batches_sheet_fifo ON batches(sheet_id, received_date, id);
CREATE INDEX IF NOT EXISTS idx_batches_supplier_id ON batches(supplier_id);
CREATE INDEX IF NOT EXISTS idx_sheets_metal_type_id ON sheets(metal_type_id);
CREATE INDEX IF NOT EXISTS idx_sales_customer_id ON sales(customer_id);
CREATE INDEX IF NOT EXISTS idx_sales_sale_date ON sales(sale_date);
CREATE INDEX IF NOT EXISTS idx_sale_items_sale_id ON sale_items(sale_id);
CREATE INDEX IF NOT EXISTS idx_sale_items_batch_id ON sale_items(batch_id);
CREATE INDEX IF NOT EXISTS idx_payments_sale_id ON payments(sale_id);
CREATE INDEX IF NOT EXISTS idx_movements_reference ON inventory_movements(reference_type, reference_id);
CREATE INDEX IF NOT EXISTS idx_customer_tx_account ON customer_transactions(customer_id, id);
CREATE INDEX IF NOT EXISTS idx_customer_tx_reference ON customer_transactions(reference_type, reference_id);
CREATE INDEX IF NOT EXISTS idx_supplier_tx_account ON supplier_transactions(supplier_id, id);
CREATE INDEX IF NOT EXISTS idx_supplier_tx_reference ON supplier_transactions(reference_type, reference_id);
"""

# Applied in order, once each; PRAGMA user_version records the last one.
MIGRATIONS: list[tuple[int, str, str]] = [
    (1, "base schema", SCHEMA_SQL),
    (2, "ledger and movement immutability triggers", IMMUTABILITY_SQL),
    (3, "fifo, ledger and reference indexes", INDEXES_SQL),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]
