"""Helpers shared by the bundled processors."""


def quote_filter(value: str) -> str:
    """Quote a string literal for a directory filter expression."""
    return "'" + value.replace("'", "''") + "'"
