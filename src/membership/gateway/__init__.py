from membership.gateway.consumer import ConsumerGateway

__all__ = ["ConsumerGateway"]
