"""Harvests YouTube po_token / visitor_data pairs from a real browser session and serves them over HTTP."""
