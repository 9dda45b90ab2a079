"""Entry point for running the bot via ``python -m giveaway_bot``."""

from giveaway_bot.bot import run

if __name__ == "__main__":
    run()
