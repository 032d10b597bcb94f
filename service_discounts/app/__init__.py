"""
Discounts Service package for the shop.

This package computes the discount a customer's cart qualifies for. It
provides:

- app.main: API surface for cart discounts, coupons and health.
- app.rules: Rule models, formula parser, evaluator, calculator and engine.
- app.repository: Storage collaborator interfaces and in-memory versions.
- app.persistence: PostgreSQL storage of rules, coupons and cart summaries.
- app.cache: Redis memory of coupons applied to carts.

Guidelines:
- Evaluation is a pure in-memory computation over one cart snapshot.
- Rules are loaded ahead of requests; storage failures surface, never
  silently turn into "no discount".
"""
