"""
Library API Tests: budget_tracker Package

Test Categories:
- Imports: entry points load cleanly whichever package is imported first
- Connection management: ConnectionManager over the shared pool

Risk Mitigations:
- Import cycle prevention (test_imports.py)
- Pool ownership and cleanup (test_connection_manager.py)
"""
