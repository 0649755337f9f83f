"""
auth/service.py -- Registration and login on top of the token lifecycle.

AuthService is the facade the HTTP layer (and the CLI) talks to. It owns the
user-directory side of authentication -- registration, credential checks,
resolving the principal behind an access token -- and delegates every token
operation to TokenLifecycleManager.

Security:
  authenticate() runs exactly one bcrypt verify on every path: against the
  stored hash when the handle exists, against the verifier's dummy hash when
  it does not. Response time therefore does not reveal whether a handle is
  registered, and every failure is the same InvalidCredentials.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.engine import Engine

from auth.lifecycle import TokenLifecycleManager
from auth.models import Principal, TokenPair
from auth.passwords import CredentialVerifier
from auth.roles import RoleHierarchy
from auth.store import PrincipalStore, RoleStore, TokenStore, create_store_engine
from auth.tokens import ACCESS, TokenCodec
from core.config import Settings
from core.errors import InvalidCredentials

logger = logging.getLogger("authcore.auth")


class AuthService:
    def __init__(
        self,
        principals: PrincipalStore,
        verifier: CredentialVerifier,
        lifecycle: TokenLifecycleManager,
        roles: RoleHierarchy,
        default_role: str = "USER",
    ) -> None:
        self.principals = principals
        self.verifier = verifier
        self.lifecycle = lifecycle
        self.roles = roles
        self.default_role = default_role

    def register(
        self,
        name: str,
        username: str,
        email: str,
        password: str,
        role: str | None = None,
    ) -> Principal:
        """Create a principal. Raises HandleAlreadyRegistered or RoleNotFound.

        The role is resolved through the hierarchy first so a principal can
        never be created pointing at a missing role.
        """
        role = role or self.default_role
        self.roles.ancestry_chain(role)
        return self.principals.create(
            Principal(
                display_name=name,
                username=username,
                email=email,
                credential_hash=self.verifier.hash(password),
                role=role,
            )
        )

    def authenticate(self, handle: str, password: str) -> Principal:
        """Return the principal for handle/password or raise InvalidCredentials."""
        principal = self.principals.lookup_by_handle(handle)
        if principal is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            self.verifier.dummy_verify(password)
            logger.warning("Failed login for unknown handle")
            raise InvalidCredentials()
        if not self.verifier.verify(password, principal.credential_hash) or not principal.is_active:
            logger.warning("Failed login for principal %s", principal.id)
            raise InvalidCredentials()
        return principal

    def login(self, handle: str, password: str) -> TokenPair:
        principal = self.authenticate(handle, password)
        logger.info("Principal %s logged in", principal.id)
        return self.lifecycle.issue(principal.id)

    def refresh(self, raw_refresh_token: str) -> TokenPair:
        return self.lifecycle.rotate(raw_refresh_token)

    def logout(self, raw_refresh_token: str) -> None:
        self.lifecycle.revoke(raw_refresh_token)

    def current_principal(self, access_token: str) -> Principal:
        """Resolve the active principal behind an access token.

        Only access tokens are accepted: a refresh token raises TokenMalformed,
        so a logged-out refresh token cannot stand in as a Bearer credential.
        Token errors propagate. A token whose subject no longer exists or is
        deactivated raises the generic InvalidCredentials rather than a
        distinct "user not found", so callers cannot detect deleted accounts.
        """
        claims = self.lifecycle.validate(access_token, kind=ACCESS)
        principal = self.principals.lookup_by_id(claims.subject)
        if principal is None or not principal.is_active:
            raise InvalidCredentials()
        return principal


def build_auth_service(settings: Settings, engine: Engine | None = None) -> AuthService:
    """Wire the full auth stack from resolved Settings.

    This is the only place settings values flow into the components: the
    signing secret into TokenCodec, the cost factor into CredentialVerifier,
    the TTLs into TokenLifecycleManager.
    """
    engine = engine or create_store_engine(settings.database_url)
    verifier = CredentialVerifier(cost=settings.hash_cost)
    codec = TokenCodec(settings.secret_key, algorithm=settings.jwt_algorithm)
    lifecycle = TokenLifecycleManager(
        codec,
        verifier,
        TokenStore(engine),
        access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
        refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
    )
    return AuthService(
        PrincipalStore(engine),
        verifier,
        lifecycle,
        RoleHierarchy(RoleStore(engine)),
        default_role=settings.default_role,
    )
