"""
Budget Service Main Entry Point

    python -m budget_service <command> [options]
"""

from budget_service.cli import main

if __name__ == "__main__":
    main()
