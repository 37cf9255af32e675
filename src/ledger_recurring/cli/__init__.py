"""Command line interface for ledger-recurring."""
