"""dbshield - scheduled MariaDB/PostgreSQL backups with change detection."""

__version__ = "1.0.0"
