"""
dss_core - off-chain task aggregator and operator node for a square-number DSS.
"""

__version__ = "0.1.0"
