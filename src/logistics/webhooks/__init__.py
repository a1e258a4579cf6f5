"""Inbound webhook ingestion: signature verification, ledger dedupe, dispatch."""
