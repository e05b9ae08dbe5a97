"""
Authentication Package

This package handles single sign-on through an external OAuth2 identity
provider, restricted to one allow-listed email domain.

Key responsibilities:
- Issuing single-use CSRF state and redirecting to the provider
- Exchanging the authorization code and fetching the verified profile
- Domain-based access control (e.g., @mesika.org only)
- Reconciling the local user record and establishing the session

Modules:
- routes: Public authentication endpoints (/api/auth/sso, /api/auth/callback, etc.)
- flow: AuthFlowController, the login state machine
- provider: IdentityProviderClient for the provider's HTTP endpoints
- session: Server-side sessions and the signed session cookie
- errors: AuthError and the AuthErrorKind taxonomy
- utils: State generation and domain checks

The authentication flow:
1. Client starts login via /api/auth/sso
2. User authenticates with the identity provider
3. Provider redirects back to /api/auth/callback with code and state
4. Gateway validates state, exchanges the code, fetches the profile,
   checks the domain, and upserts the user
5. Client's session cookie now carries the authenticated session
"""

from .errors import AuthError, AuthErrorKind

__all__ = [
    "AuthError",
    "AuthErrorKind",
]
