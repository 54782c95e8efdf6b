"""Crystal Store: Discord ticket storefront with Stripe / Cryptomus payments."""
