"""
SSO Gateway

Single sign-on gateway that delegates identity verification to an external
OAuth2 identity provider, admits only one email domain, and keeps a local
user record per verified email.

Packages:
- auth: login flow, provider client, sessions
- users: user persistence
"""

__version__ = "1.0.0"
