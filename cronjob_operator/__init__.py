"""Cron schedule parsing, Cronjob defaulting and validation, and reconciliation of Cronjobs into Jobs."""

__version__ = "0.1.0"
__all__ = ["api", "schedule", "webhook", "controller"]