"""Data analyst agent: free-text analysis task in, JSON answers out."""
