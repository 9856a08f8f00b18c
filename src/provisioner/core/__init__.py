"""Ordering, execution, state and reporting."""
