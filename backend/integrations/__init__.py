"""Provider integrations and sync pipelines for the recovery backend.

This package contains:
- Credential vault and OAuth token handling
- Gmail and Outlook mail adapters
- Amazon SP-API client, report poller and TSV parser
- Supplier discovery, invoice ingestion and duplicate resolution
- Fulfillment sync and discrepancy derivation
"""
