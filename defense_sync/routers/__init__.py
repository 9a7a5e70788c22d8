"""
HTTP routers for the sync engine
"""
