"""Discord giveaway bot with durable, timer-driven giveaway lifecycles."""
