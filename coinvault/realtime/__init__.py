"""Realtime components: change broadcaster and simulation scheduler."""
