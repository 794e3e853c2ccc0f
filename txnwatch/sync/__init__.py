"""
Sync engine.

Fetches transactions from every configured account, stores the ones not
seen before and sends one notification per stored record.
"""
