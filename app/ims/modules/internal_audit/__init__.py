"""
Internal audit

Participants (auditors/auditees), the yearly plan grid, scheduled audits and
their executions (checklist findings graded OK / AFI / NC), plus the PDF report.
"""
