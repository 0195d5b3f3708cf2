"""
CJ Dropshipping integration.

All provider traffic goes through CJRequestExecutor, which shares one
GlobalThrottle per process and one CJTokenManager per client.
"""
from app.services.cj.client import CJAPIClient
from app.services.cj.stock import CJStockAggregator

__all__ = ["CJAPIClient", "CJStockAggregator"]
