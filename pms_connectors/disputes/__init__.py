"""
Dispute Network Adapters

Card-network alert services implementing the dispute adapter contract.
Each network lives in its own package with a connector module; the dispute
registry discovers them the same way the PMS registry discovers adapters.
"""
