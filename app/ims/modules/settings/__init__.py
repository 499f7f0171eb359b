"""System settings and master data (departments, document types, units)."""
