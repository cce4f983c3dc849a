"""CoinVault balance engine."""
