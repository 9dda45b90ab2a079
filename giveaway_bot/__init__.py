"""Discord bot that runs timed giveaways with eligibility rules and rerolls."""
