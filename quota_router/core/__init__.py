"""
Core modules for Quota Router.

This package contains the usage ledger, quota limit checks and
provider selection policies.
"""
