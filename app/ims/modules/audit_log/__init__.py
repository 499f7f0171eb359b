"""Audit trail viewer and spreadsheet export over the append-only audit events."""
