"""Feed reconciliation logic."""
