"""Database schema definition and initialization."""

SCHEMA_VERSION = 1

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    # Users (identity only, credentials live outside this system)
    """CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        display_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user'
            CHECK (role IN ('admin', 'manager', 'user')),
        department TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Units of measure (opaque labels)
    """CREATE TABLE IF NOT EXISTS units (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        abbreviation TEXT NOT NULL,
        description TEXT
    )""",

    """CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    """CREATE TABLE IF NOT EXISTS suppliers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        contact_name TEXT,
        email TEXT,
        phone TEXT,
        address TEXT,
        notes TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Warehouse inventory
    """CREATE TABLE IF NOT EXISTS inventory_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sku TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT,
        item_type TEXT NOT NULL DEFAULT 'raw_material'
            CHECK (item_type IN ('raw_material', 'semi_finished_product',
                                 'finished_product', 'sheet_material',
                                 'hardware_accessory')),
        category_id INTEGER,
        unit_id INTEGER,
        supplier_id INTEGER,
        location TEXT,
        quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
        min_quantity INTEGER NOT NULL DEFAULT 0 CHECK (min_quantity >= 0),
        max_quantity INTEGER NOT NULL DEFAULT 1000 CHECK (max_quantity >= 0),
        unit_price REAL NOT NULL DEFAULT 0.00 CHECK (unit_price >= 0),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL,
        FOREIGN KEY (unit_id) REFERENCES units(id) ON DELETE SET NULL,
        FOREIGN KEY (supplier_id) REFERENCES suppliers(id) ON DELETE SET NULL
    )""",

    # Every change to inventory_items.quantity appends one row here
    """CREATE TABLE IF NOT EXISTS stock_movements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        movement_type TEXT NOT NULL
            CHECK (movement_type IN ('in', 'out', 'adjustment')),
        quantity REAL NOT NULL,
        quantity_before REAL NOT NULL,
        quantity_after REAL NOT NULL,
        reference_type TEXT,
        reference_id INTEGER,
        reference_number TEXT,
        notes TEXT,
        created_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (item_id) REFERENCES inventory_items(id) ON DELETE CASCADE,
        FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
    )""",

    # Audit trail (no foreign keys: rows outlive what they describe)
    """CREATE TABLE IF NOT EXISTS audit_trail (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_name TEXT NOT NULL,
        record_id INTEGER,
        action TEXT NOT NULL
            CHECK (action IN ('INSERT', 'UPDATE', 'DELETE')),
        old_values TEXT,
        new_values TEXT,
        user_id INTEGER,
        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Atomic document counters, one row per (name, period)
    """CREATE TABLE IF NOT EXISTS document_sequences (
        name TEXT NOT NULL,
        period INTEGER NOT NULL,
        last_value INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (name, period)
    )""",

    # Requisitions
    """CREATE TABLE IF NOT EXISTS requisitions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        requester_id INTEGER NOT NULL,
        department TEXT,
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected',
                              'partially_approved', 'issued',
                              'partially_issued')),
        required_date DATE,
        estimated_cost REAL NOT NULL DEFAULT 0,
        approver_id INTEGER,
        approval_date TIMESTAMP,
        approval_notes TEXT,
        issued_by INTEGER,
        issued_date TIMESTAMP,
        issue_notes TEXT,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (requester_id) REFERENCES users(id),
        FOREIGN KEY (approver_id) REFERENCES users(id),
        FOREIGN KEY (issued_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS requisition_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        requisition_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        approved_quantity INTEGER NOT NULL DEFAULT 0
            CHECK (approved_quantity >= 0),
        rejected_quantity INTEGER NOT NULL DEFAULT 0
            CHECK (rejected_quantity >= 0),
        issued_quantity INTEGER NOT NULL DEFAULT 0
            CHECK (issued_quantity >= 0),
        unit_price REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected',
                              'partially_approved')),
        issue_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (issue_status IN ('pending', 'partial', 'issued')),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK (approved_quantity + rejected_quantity <= quantity),
        CHECK (issued_quantity <= approved_quantity),
        FOREIGN KEY (requisition_id) REFERENCES requisitions(id)
            ON DELETE CASCADE,
        FOREIGN KEY (item_id) REFERENCES inventory_items(id)
    )""",

    # Cabinet catalog
    """CREATE TABLE IF NOT EXISTS cabinet_models (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        default_width REAL NOT NULL,
        default_height REAL NOT NULL,
        default_depth REAL NOT NULL,
        min_width REAL NOT NULL,
        max_width REAL NOT NULL,
        min_height REAL NOT NULL,
        max_height REAL NOT NULL,
        min_depth REAL NOT NULL,
        max_depth REAL NOT NULL,
        base_cost REAL NOT NULL DEFAULT 0 CHECK (base_cost >= 0),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    """CREATE TABLE IF NOT EXISTS cabinet_model_materials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cabinet_model_id INTEGER NOT NULL,
        material_item_id INTEGER NOT NULL,
        cost_factor_per_sqft REAL NOT NULL CHECK (cost_factor_per_sqft >= 0),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (cabinet_model_id, material_item_id),
        FOREIGN KEY (cabinet_model_id) REFERENCES cabinet_models(id)
            ON DELETE CASCADE,
        FOREIGN KEY (material_item_id) REFERENCES inventory_items(id)
    )""",

    """CREATE TABLE IF NOT EXISTS cabinet_model_accessories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cabinet_model_id INTEGER NOT NULL,
        accessory_item_id INTEGER NOT NULL,
        quantity_per_cabinet INTEGER NOT NULL CHECK (quantity_per_cabinet >= 0),
        cost_factor_per_unit REAL NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (cabinet_model_id, accessory_item_id),
        FOREIGN KEY (cabinet_model_id) REFERENCES cabinet_models(id)
            ON DELETE CASCADE,
        FOREIGN KEY (accessory_item_id) REFERENCES inventory_items(id)
    )""",

    """CREATE TABLE IF NOT EXISTS kitchen_projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        client_id INTEGER,
        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'quoted', 'ordered', 'completed',
                              'cancelled')),
        total_estimated_cost REAL NOT NULL DEFAULT 0,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (client_id) REFERENCES users(id) ON DELETE SET NULL
    )""",

    """CREATE TABLE IF NOT EXISTS kitchen_project_cabinets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kitchen_project_id INTEGER NOT NULL,
        cabinet_model_id INTEGER NOT NULL,
        custom_width REAL NOT NULL,
        custom_height REAL NOT NULL,
        custom_depth REAL NOT NULL,
        selected_material_id INTEGER NOT NULL,
        selected_accessories TEXT NOT NULL DEFAULT '[]',
        calculated_cost REAL NOT NULL,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (kitchen_project_id) REFERENCES kitchen_projects(id)
            ON DELETE CASCADE,
        FOREIGN KEY (cabinet_model_id) REFERENCES cabinet_models(id),
        FOREIGN KEY (selected_material_id) REFERENCES inventory_items(id)
    )""",

    # Bills of materials
    """CREATE TABLE IF NOT EXISTS bill_of_materials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        finished_product_id INTEGER,
        version TEXT NOT NULL DEFAULT '1.0',
        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'active', 'inactive', 'archived')),
        unit_cost REAL NOT NULL DEFAULT 0,
        labor_cost REAL NOT NULL DEFAULT 0,
        overhead_cost REAL NOT NULL DEFAULT 0,
        total_cost REAL NOT NULL DEFAULT 0,
        created_by INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (finished_product_id) REFERENCES inventory_items(id),
        FOREIGN KEY (created_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS bom_components (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bom_id INTEGER NOT NULL,
        item_id INTEGER,
        component_bom_id INTEGER,
        quantity REAL NOT NULL CHECK (quantity > 0),
        unit_id INTEGER,
        unit_cost REAL NOT NULL DEFAULT 0,
        total_cost REAL NOT NULL DEFAULT 0,
        waste_factor REAL NOT NULL DEFAULT 0 CHECK (waste_factor >= 0),
        notes TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK ((item_id IS NULL AND component_bom_id IS NOT NULL)
               OR (item_id IS NOT NULL AND component_bom_id IS NULL)),
        FOREIGN KEY (bom_id) REFERENCES bill_of_materials(id)
            ON DELETE CASCADE,
        FOREIGN KEY (item_id) REFERENCES inventory_items(id),
        FOREIGN KEY (component_bom_id) REFERENCES bill_of_materials(id),
        FOREIGN KEY (unit_id) REFERENCES units(id) ON DELETE SET NULL
    )""",

    """CREATE TABLE IF NOT EXISTS bom_operations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bom_id INTEGER NOT NULL,
        operation_name TEXT NOT NULL,
        description TEXT,
        sequence_number INTEGER NOT NULL DEFAULT 1,
        estimated_time_minutes INTEGER NOT NULL DEFAULT 0,
        labor_rate REAL NOT NULL DEFAULT 0,
        machine_required TEXT,
        skill_level TEXT NOT NULL DEFAULT 'basic'
            CHECK (skill_level IN ('basic', 'intermediate', 'advanced',
                                   'expert')),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (bom_id) REFERENCES bill_of_materials(id)
            ON DELETE CASCADE
    )""",

    # Production orders
    """CREATE TABLE IF NOT EXISTS production_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_number TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        bom_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'planned', 'in_progress',
                              'completed', 'cancelled')),
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
        start_date DATE,
        due_date DATE,
        completion_date TIMESTAMP,
        finished_product_id INTEGER,
        planned_cost REAL NOT NULL DEFAULT 0,
        actual_cost REAL NOT NULL DEFAULT 0,
        notes TEXT,
        created_by INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (bom_id) REFERENCES bill_of_materials(id),
        FOREIGN KEY (finished_product_id) REFERENCES inventory_items(id),
        FOREIGN KEY (created_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS production_order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        production_order_id INTEGER NOT NULL,
        item_id INTEGER,
        component_bom_id INTEGER,
        component_type TEXT NOT NULL DEFAULT 'item'
            CHECK (component_type IN ('item', 'bom')),
        item_name TEXT NOT NULL,
        required_quantity REAL NOT NULL CHECK (required_quantity > 0),
        issued_quantity REAL NOT NULL DEFAULT 0 CHECK (issued_quantity >= 0),
        unit_cost REAL NOT NULL DEFAULT 0,
        total_cost REAL NOT NULL DEFAULT 0,
        waste_factor REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'partial', 'issued')),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (production_order_id) REFERENCES production_orders(id)
            ON DELETE CASCADE,
        FOREIGN KEY (item_id) REFERENCES inventory_items(id),
        FOREIGN KEY (component_bom_id) REFERENCES bill_of_materials(id)
    )""",

    """CREATE TABLE IF NOT EXISTS production_order_operations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        production_order_id INTEGER NOT NULL,
        operation_name TEXT NOT NULL,
        description TEXT,
        sequence_number INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'in_progress', 'completed',
                              'skipped')),
        actual_start_date TIMESTAMP,
        actual_end_date TIMESTAMP,
        estimated_time_minutes INTEGER NOT NULL DEFAULT 0,
        actual_time_minutes INTEGER NOT NULL DEFAULT 0,
        labor_rate REAL NOT NULL DEFAULT 0,
        machine_required TEXT,
        skill_level TEXT NOT NULL DEFAULT 'basic',
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (production_order_id) REFERENCES production_orders(id)
            ON DELETE CASCADE
    )""",

    """CREATE TABLE IF NOT EXISTS production_order_issues (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        production_order_id INTEGER NOT NULL,
        production_order_item_id INTEGER NOT NULL,
        quantity REAL NOT NULL CHECK (quantity > 0),
        issued_by INTEGER NOT NULL,
        issued_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        notes TEXT,
        FOREIGN KEY (production_order_id) REFERENCES production_orders(id)
            ON DELETE CASCADE,
        FOREIGN KEY (production_order_item_id)
            REFERENCES production_order_items(id) ON DELETE CASCADE,
        FOREIGN KEY (issued_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS production_order_completions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        production_order_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        completed_by INTEGER NOT NULL,
        completion_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        quality_check_passed INTEGER NOT NULL DEFAULT 1,
        batch_number TEXT,
        notes TEXT,
        FOREIGN KEY (production_order_id) REFERENCES production_orders(id)
            ON DELETE CASCADE,
        FOREIGN KEY (completed_by) REFERENCES users(id)
    )""",

    # Purchase orders
    """CREATE TABLE IF NOT EXISTS purchase_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        po_number TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        supplier_id INTEGER NOT NULL,
        requisition_id INTEGER,
        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'pending_approval', 'approved', 'sent',
                              'partially_received', 'received', 'cancelled')),
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        order_date DATE,
        expected_delivery_date DATE,
        actual_delivery_date DATE,
        subtotal REAL NOT NULL DEFAULT 0,
        tax_amount REAL NOT NULL DEFAULT 0,
        shipping_cost REAL NOT NULL DEFAULT 0,
        total_amount REAL NOT NULL DEFAULT 0,
        notes TEXT,
        created_by INTEGER NOT NULL,
        approved_by INTEGER,
        approval_date TIMESTAMP,
        approval_notes TEXT,
        sent_date TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (supplier_id) REFERENCES suppliers(id),
        FOREIGN KEY (requisition_id) REFERENCES requisitions(id)
            ON DELETE SET NULL,
        FOREIGN KEY (created_by) REFERENCES users(id),
        FOREIGN KEY (approved_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS purchase_order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        po_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        unit_price REAL NOT NULL DEFAULT 0 CHECK (unit_price >= 0),
        total_price REAL NOT NULL DEFAULT 0,
        received_quantity INTEGER NOT NULL DEFAULT 0
            CHECK (received_quantity >= 0),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK (received_quantity <= quantity),
        FOREIGN KEY (po_id) REFERENCES purchase_orders(id) ON DELETE CASCADE,
        FOREIGN KEY (item_id) REFERENCES inventory_items(id)
    )""",

    """CREATE TABLE IF NOT EXISTS po_receiving (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        po_id INTEGER NOT NULL,
        po_item_id INTEGER NOT NULL,
        received_quantity INTEGER NOT NULL CHECK (received_quantity > 0),
        received_by INTEGER NOT NULL,
        received_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        batch_number TEXT,
        expiry_date DATE,
        quality_check_passed INTEGER NOT NULL DEFAULT 1,
        notes TEXT,
        FOREIGN KEY (po_id) REFERENCES purchase_orders(id) ON DELETE CASCADE,
        FOREIGN KEY (po_item_id) REFERENCES purchase_order_items(id)
            ON DELETE CASCADE,
        FOREIGN KEY (received_by) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_inventory_items_type ON inventory_items(item_type)",
    "CREATE INDEX IF NOT EXISTS idx_inventory_items_category ON inventory_items(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_stock_movements_item ON stock_movements(item_id)",
    "CREATE INDEX IF NOT EXISTS idx_stock_movements_reference ON stock_movements(reference_type, reference_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_trail_record ON audit_trail(table_name, record_id)",
    "CREATE INDEX IF NOT EXISTS idx_requisitions_status ON requisitions(status)",
    "CREATE INDEX IF NOT EXISTS idx_requisitions_requester ON requisitions(requester_id)",
    "CREATE INDEX IF NOT EXISTS idx_requisition_items_requisition ON requisition_items(requisition_id)",
    "CREATE INDEX IF NOT EXISTS idx_requisition_items_item ON requisition_items(item_id)",
    "CREATE INDEX IF NOT EXISTS idx_cabinet_model_materials_model ON cabinet_model_materials(cabinet_model_id)",
    "CREATE INDEX IF NOT EXISTS idx_cabinet_model_accessories_model ON cabinet_model_accessories(cabinet_model_id)",
    "CREATE INDEX IF NOT EXISTS idx_kitchen_projects_status ON kitchen_projects(status)",
    "CREATE INDEX IF NOT EXISTS idx_kitchen_project_cabinets_project ON kitchen_project_cabinets(kitchen_project_id)",
    "CREATE INDEX IF NOT EXISTS idx_kitchen_project_cabinets_model ON kitchen_project_cabinets(cabinet_model_id)",
    "CREATE INDEX IF NOT EXISTS idx_bom_status ON bill_of_materials(status)",
    "CREATE INDEX IF NOT EXISTS idx_bom_components_bom ON bom_components(bom_id, sort_order)",
    "CREATE INDEX IF NOT EXISTS idx_bom_components_component_bom ON bom_components(component_bom_id)",
    "CREATE INDEX IF NOT EXISTS idx_bom_operations_bom ON bom_operations(bom_id, sequence_number)",
    "CREATE INDEX IF NOT EXISTS idx_production_orders_status ON production_orders(status)",
    "CREATE INDEX IF NOT EXISTS idx_production_orders_bom ON production_orders(bom_id)",
    "CREATE INDEX IF NOT EXISTS idx_production_order_items_order ON production_order_items(production_order_id)",
    "CREATE INDEX IF NOT EXISTS idx_production_order_operations_order ON production_order_operations(production_order_id)",
    "CREATE INDEX IF NOT EXISTS idx_purchase_orders_status ON purchase_orders(status)",
    "CREATE INDEX IF NOT EXISTS idx_purchase_orders_supplier ON purchase_orders(supplier_id)",
    "CREATE INDEX IF NOT EXISTS idx_purchase_order_items_po ON purchase_order_items(po_id)",
    "CREATE INDEX IF NOT EXISTS idx_po_receiving_po ON po_receiving(po_id)",

    # Keep updated_at current
    """CREATE TRIGGER IF NOT EXISTS trg_inventory_items_updated
        AFTER UPDATE ON inventory_items
        FOR EACH ROW
        WHEN NEW.updated_at = OLD.updated_at
    BEGIN
        UPDATE inventory_items SET updated_at = CURRENT_TIMESTAMP
        WHERE id = NEW.id;
    END""",

    f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})",
]

_SEED_UNITS = [
    ("Each", "ea", "Individual pieces"),
    ("Square Foot", "sqft", "Sheet goods by area"),
    ("Linear Foot", "lf", "Edge banding, trim and moulding"),
    ("Box", "box", "Boxed fasteners and hardware"),
    ("Pair", "pr", "Hinges and slides sold in pairs"),
    ("Gallon", "gal", "Finishes and adhesives"),
]

_SEED_CATEGORIES = [
    ("Sheet Goods", "Plywood, MDF, particle board and melamine"),
    ("Hardware", "Hinges, slides, pulls and fasteners"),
    ("Finishes", "Stains, paints, lacquers and adhesives"),
    ("Raw Materials", "Lumber and other unprocessed stock"),
    ("Components", "Semi-finished parts and sub-assemblies"),
    ("Finished Goods", "Completed cabinets and products"),
]


def _get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    row = conn.execute(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if not row:
        return 0
    row = conn.execute(
        "SELECT MAX(version) AS v FROM schema_version"
    ).fetchone()
    return row["v"] if row and row["v"] else 0


def initialize_database(db_connection):
    """Create all tables, indexes, triggers, and seed data.

    Safe to call on every start: an up-to-date database is left untouched.
    """
    with db_connection.get_connection() as conn:
        version = _get_schema_version(conn)
        if version >= SCHEMA_VERSION:
            return

        for stmt in _SCHEMA_STATEMENTS:
            conn.execute(stmt)
        for name, abbreviation, desc in _SEED_UNITS:
            conn.execute(
                "INSERT OR IGNORE INTO units (name, abbreviation, description) "
                "VALUES (?, ?, ?)",
                (name, abbreviation, desc),
            )
        for name, desc in _SEED_CATEGORIES:
            conn.execute(
                "INSERT OR IGNORE INTO categories (name, description) "
                "VALUES (?, ?)",
                (name, desc),
            )
