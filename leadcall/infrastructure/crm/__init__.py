"""
CRM Client Package
"""
from leadcall.infrastructure.crm.zoho import ZohoCRMClient

__all__ = ["ZohoCRMClient"]
