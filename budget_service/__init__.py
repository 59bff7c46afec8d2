"""
Budget Service

Storage, alert transport and CLI behind the budget_tracker library.
"""
