"""
Rate limiting configuration.

The Limiter instance is created in bgf/__init__.py with no default limits;
this module applies granular limits per blueprint.

Usage:
    from bgf.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Staff login:      10/minute  (access codes are short secrets)
        - Workflow/request: 60/minute
        - Read-only blueprints: 200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit("10/minute")(bp)

    for bp_name in ("workflow_bp", "request_bp", "user_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: login: 10/min, write: 60/min, read: 200/min")
