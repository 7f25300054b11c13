"""Patient sign-in: demo user directory, access tokens and the login route."""

__all__ = [
    "demo_users",
    "tokens",
    "router",
]
