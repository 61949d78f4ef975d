"""
Feydar - FEY factory token deployment indexer
Listens for TokenCreated events on Base, enriches and reconciles them into the deployments store
"""

__version__ = "0.3.0"
