"""Delivery Router module."""

from .router import DeliveryRouter, IDeliveryRouter

__all__ = ["DeliveryRouter", "IDeliveryRouter"]
