"""Competency framework: job-role requirements, employee skill ratings and training plans."""
