"""
Persistence package for Discounts Service.

Provides the PostgreSQL storage of cart rules and coupon codes, and the
read-only cart summary consumed as the engine's cart snapshot.
"""
