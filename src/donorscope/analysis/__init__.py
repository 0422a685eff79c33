"""Analysis engine: aggregation, metrics, reconciliation and control flow."""
