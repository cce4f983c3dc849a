"""Accounts bounded context: balances, portfolios, withdrawals, deposits."""
