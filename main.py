"""
Entry point for the follow-up CRM service.

Run with: python main.py
Or with uv: uv run python main.py
"""

import asyncio
from crm.main import main


if __name__ == "__main__":
    asyncio.run(main())
