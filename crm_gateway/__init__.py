"""
Multi-tenant gateway in front of the CRM contacts API.

Callers authenticate with an x-client-key header; the gateway resolves the
key to a business and forwards the request with that businessId injected.
"""

__version__ = "1.0.0"
