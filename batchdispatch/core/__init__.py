"""Dispatch core: budgets, splitting, per-batch execution, orchestration."""
