"""Risk registers: quality (QRA), hazard (HIRA) and environmental aspect (EAA) assessments."""
