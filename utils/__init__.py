"""Library Ledger - helper utilities

- Field validators (validators.py)
- CLI output helpers (ui_helpers.py)
"""
