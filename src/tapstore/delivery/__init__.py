from .client import DeliveryResult, EmailDeliveryClient, ProgressReader

__all__ = ["DeliveryResult", "EmailDeliveryClient", "ProgressReader"]
