"""
PMS Connector Adapters

Vendor-specific implementations of the adapter contract. Each adapter maps its
vendor's REST dialect onto the canonical models and leaves request plumbing,
auth and error classification to BaseAdapter.
"""

# Adapters are dynamically loaded by the factory - no explicit imports needed
