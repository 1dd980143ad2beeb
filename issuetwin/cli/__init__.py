"""issuetwin command-line interface."""
