"""Background workers: notification delivery and scheduled ledger sweeps."""
