"""Sync services for readlist-vault."""
