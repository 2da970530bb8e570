"""
Signer checks.

Signatures are verified upstream (wallet gateway, API auth layer). By the
time a request reaches the engine it carries an AuthContext listing the
identities that proved control; the engine only compares identities.
"""

from dataclasses import dataclass, field

from errors import ErrorCode, fail


@dataclass(frozen=True)
class AuthContext:
    """Identities that signed the current request."""

    signers: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, *signers: str) -> "AuthContext":
        return cls(signers=frozenset(s for s in signers if s))

    @classmethod
    def from_header(cls, value: str | None) -> "AuthContext":
        """Parse a comma-separated signer list such as an ``X-Signers`` header."""
        if not value:
            return cls()
        return cls.of(*(part.strip() for part in value.split(",")))

    def is_signer(self, identity: str | None) -> bool:
        return identity is not None and identity in self.signers

    def require_signer(
        self,
        identity: str,
        operation: str = "unknown",
        code: ErrorCode = ErrorCode.MISSING_REQUIRED_SIGNATURE,
    ) -> None:
        if not self.is_signer(identity):
            fail(code, operation=operation, identity=identity)

    def require_authority(self, record_authority: str, operation: str = "unknown") -> None:
        """The stored authority must be among the signers."""
        if not self.signers:
            fail(ErrorCode.MISSING_REQUIRED_SIGNATURE, operation=operation)
        if record_authority not in self.signers:
            fail(ErrorCode.INVALID_AUTHORITY_KEY, operation=operation, authority=record_authority)
