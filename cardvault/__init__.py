"""CardVault: trade and reward core for a collectible card game."""
