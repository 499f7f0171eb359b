"""Objectives and KPI tracking with periodic measurements."""
