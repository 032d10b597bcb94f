"""
Cache package for Discounts Service.

Provides a Redis-backed memory of the coupon code applied to each cart,
expiring after the configured coupon code timeout.
"""
