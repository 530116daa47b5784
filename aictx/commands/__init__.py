"""Command implementations behind the click entry points in ``aictx.cli``."""
