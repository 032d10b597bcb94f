"""
Discount rules package.

Defines the rule model and the evaluation pipeline used by the Discounts
Service: a stored formula is parsed, bound to the live cart, priced, and the
best competing discount is selected.

Modules of interest:
- models: Data classes for rules, cart snapshots and results.
- parser: Formula shape check and parameter decoding.
- evaluator: Variable binding, application frequency and eligible price.
- calculator: Flat and proportional discount amounts.
- engine: General rule and coupon orchestration with best-discount selection.

The engine is a pure in-memory computation; storage lives behind the
repository interfaces.
"""
