"""
Service layer for the Image Duel bot.

Long-lived services owned by the bot: guild configuration, the duel
lifecycle and its scheduler, cached standings and the optional Redis
helpers.
"""
