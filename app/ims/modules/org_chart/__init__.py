"""Organisation chart: employee nodes keyed by caller-supplied ids."""
