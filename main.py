"""
DayLog — Entry Point.

`python main.py` starts the Telegram bot, the timer tick job and, when a
spreadsheet is configured, the ledger sync worker.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# Long polling logs every getUpdates request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

from src.bot.telegram_bot import main

if __name__ == "__main__":
    main()
