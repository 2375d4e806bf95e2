"""Clients package containing the model gateway and context stats clients."""
