"""Service layer.

Routes stay thin and focused on HTTP handling; services own what happens
after a request has passed the security guards.

Layer hierarchy:
    Routes (HTTP) -> Services -> core guards (redirects, CSRF, webhooks)

Services should NOT:
- Know about HTTP request/response details
- Return Pydantic schema objects (routes do the conversion)
"""
