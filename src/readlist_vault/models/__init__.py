"""Domain and database models for readlist-vault."""
