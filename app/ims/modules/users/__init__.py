"""User administration (accounts, roles, activation)."""
