"""
Maqraah Bot — Entry Point.

Single entry point: `python main.py` starts the Discord bot.
"""

import logging

from src.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.bot.discord_bot import main

if __name__ == "__main__":
    main()
