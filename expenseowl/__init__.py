"""
ExpenseOwl - Storage Core

Persistence for expenses and recurring expense rules.

DESIGN PRINCIPLES:
1. One storage contract, two interchangeable backends (JSON files, PostgreSQL)
2. Recurring rules are expanded into concrete expenses by the store
3. Validate before persisting, never after
4. Substrate failures surface to the caller, no silent retries
"""

__version__ = "1.0.0"
__author__ = "ExpenseOwl Team"
