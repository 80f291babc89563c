"""Human readable formatting helpers."""

_UNITS = ('B', 'KiB', 'MiB', 'GiB', 'TiB', 'PiB', 'EiB')


def format_bytes(size: int) -> str:
    """
    Format a byte count in binary units.

    Args:
        size: Number of bytes

    Returns:
        String like "512 B", "1.5 GiB" or "12 TiB"
    """
    if size < 1024:
        return f"{size} B"

    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1

    # one decimal below 10 units, whole numbers above
    if value < 10:
        return f"{value:.1f} {_UNITS[unit]}"
    return f"{value:.0f} {_UNITS[unit]}"


def format_gb(size: int) -> str:
    """Format a byte count as GB with two decimals, as used in summaries."""
    return f"{size / (1024**3):.2f} GB"
