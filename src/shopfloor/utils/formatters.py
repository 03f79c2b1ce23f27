"""Formatting utilities for display values."""


def format_currency(value: float) -> str:
    """Format a float as USD currency."""
    return f"${value:,.2f}"


def format_quantity(value: float, min_quantity: float = 0) -> str:
    """Format quantity, flagging low stock."""
    text = f"{value:g}" if isinstance(value, float) else str(value)
    if min_quantity > 0 and value <= min_quantity:
        return f"{text} (LOW)"
    return text


def format_dimensions(width: float, height: float, depth: float) -> str:
    """Cabinet size label, e.g. ``24W x 30H x 24D``."""
    return f"{width:g}W x {height:g}H x {depth:g}D"
