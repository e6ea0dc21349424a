"""sqlassess: rule-based health assessment for database targets."""

__version__ = "0.3.0"
