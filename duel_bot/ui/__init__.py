"""
Discord adapters for the duel lifecycle: the presenter that posts duels and
results, the image storage collaborator and the persistent vote buttons.
"""
