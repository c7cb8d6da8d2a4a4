"""Bank notification email sync components for the spending app.

This package contains:
- Gmail mailbox gateway (auth, client) and the bank filter catalog
- Email content parser backed by LLM completion providers
- Merchant normalization and the merchant -> category learning engine
- Duplicate detection against recorded transactions
- Per-connection sync orchestrator, scheduler fan-out and recovery sweep
"""
