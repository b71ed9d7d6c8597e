"""Payment confirmation and order reconciliation for the mobile checkout."""
