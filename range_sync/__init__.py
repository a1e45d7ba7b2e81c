"""
Published address range -> firewall policy sync application.

This package provides:
- Fetching and parsing of published CIDR ranges from several JSON feeds
- Diffing against the last applied snapshot (local JSON state file)
- Reconciliation of allow rules in a remote firewall policy store
- Retrying HTTP client shared by all outbound calls
"""
