"""Application-wide constants."""

APP_NAME = "Shopfloor"
APP_VERSION = "1.0.0"

# Inches per foot, for cabinet geometry
INCHES_PER_FOOT = 12

# Standard cabinet build steps: (name, description, estimated minutes)
STANDARD_CABINET_OPERATIONS = [
    ("Cut Materials", "Cut all cabinet panels to size", 45),
    ("Assemble Cabinet", "Assemble cabinet structure", 60),
    ("Install Hardware", "Install hinges, handles, and other hardware", 30),
    ("Finishing", "Apply edge banding and finishing touches", 45),
]

# Allowed header transitions; issuing, receiving and completion move
# orders forward on their own and are not listed here
PRODUCTION_STATUS_TRANSITIONS = {
    "draft": ("planned", "cancelled"),
    "planned": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

OPERATION_STATUS_TRANSITIONS = {
    "pending": ("in_progress", "skipped"),
    "in_progress": ("completed", "skipped"),
    "completed": (),
    "skipped": (),
}

PURCHASE_ORDER_STATUS_TRANSITIONS = {
    "draft": ("pending_approval", "approved", "cancelled"),
    "pending_approval": ("approved", "draft", "cancelled"),
    "approved": ("sent", "cancelled"),
    "sent": ("cancelled",),
    "partially_received": (),
    "received": (),
    "cancelled": (),
}

KITCHEN_PROJECT_STATUS_TRANSITIONS = {
    "draft": ("quoted", "cancelled"),
    "quoted": ("draft", "ordered", "cancelled"),
    "ordered": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

# Stock movement reference types
REFERENCE_REQUISITION = "requisition"
REFERENCE_PRODUCTION_ORDER = "production_order"
REFERENCE_PURCHASE_ORDER = "purchase_order"
