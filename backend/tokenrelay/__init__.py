"""Real-time token price and trade relay."""
