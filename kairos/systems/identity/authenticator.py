"""
KairOS -- Challenge-Response Authentication

Proves possession of a pendant (chipUID) and knowledge of its PIN without
either secret leaving the device.

  prover:   sig = Ed25519_sign(derived_key, SHA-512(challenge))
  verifier: resolve the REGISTERED key for chipUID, Ed25519_verify(sig)

The key embedded in a proof is never trusted; the verifier always looks the
key up independently. Challenges are issued and consumed by a
ChallengeLedger so a captured signature cannot be replayed.
Verification attempts per chipUID may be throttled by a RateLimiter.

State machine per attempt:
  WAITING -> PROOF_GENERATED -> KEY_RESOLVED -> VERIFIED | REJECTED
                                     \\-> LOOKUP_FAILED
"""

from __future__ import annotations

import hashlib
from typing import Any

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from kairos.config import IdentityConfig
from kairos.errors import InvalidInputError
from kairos.primitives.common import now_ms
from kairos.primitives.identity import (
    ED25519_KEY_LENGTH,
    ED25519_SIGNATURE_LENGTH,
    AuthResult,
    AuthState,
    PendantData,
    SignatureProof,
)
from kairos.systems.identity.challenge import ChallengeLedger
from kairos.systems.identity.derivation import (
    public_key_bytes,
    signing_key,
    validate_chip_uid,
)
from kairos.systems.registry.resolver import RegistryCoordinator
from kairos.systems.safety.rate_limit import RateLimiter

logger = structlog.get_logger("kairos.systems.identity.authenticator")

LOOKUP_FAILED_ERROR = "Public key not found in registry"
INVALID_SIGNATURE_ERROR = "Invalid signature - wrong PIN or compromised chip"
CHALLENGE_REJECTED_ERROR = "Challenge expired or already used"
RATE_LIMITED_ERROR = "Too many authentication attempts - try again later"


def _challenge_digest(challenge: str) -> bytes:
    return hashlib.sha512(challenge.encode()).digest()


class ChallengeAuthenticator:
    """Issues challenges, generates proofs, and verifies them against the registry."""

    def __init__(
        self,
        config: IdentityConfig,
        ledger: ChallengeLedger,
        resolver: RegistryCoordinator,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._resolver = resolver
        self._limiter = limiter
        self._attempts = 0
        self._outcomes: dict[AuthState, int] = {}
        self._logger = logger.bind(component="challenge_authenticator")

    @property
    def ledger(self) -> ChallengeLedger:
        return self._ledger

    # ─── Prover Side ────────────────────────────────────────────────

    def generate_challenge(self, context: str | None = None) -> str:
        return self._ledger.issue(context)

    def prove_identity(self, chip_uid: str, pin: str, challenge: str) -> SignatureProof:
        """Sign SHA-512(challenge) with the derived key. Never touches a registry."""
        if not challenge:
            raise InvalidInputError("Challenge must be a non-empty string")
        private_key = signing_key(chip_uid, pin, min_pin_length=self._config.min_pin_length)
        signature = private_key.sign(_challenge_digest(challenge))
        return SignatureProof(
            signature=signature,
            public_key=public_key_bytes(private_key),
            chip_uid=chip_uid,
        )

    # ─── Verifier Side ──────────────────────────────────────────────

    def verify(
        self,
        chip_uid: str,
        challenge: str,
        signature: bytes,
        public_key: bytes,
    ) -> bool:
        """
        Check a signature over SHA-512(challenge). False on mismatch;
        InvalidInputError only for malformed input.
        """
        validate_chip_uid(chip_uid)
        if not challenge:
            raise InvalidInputError("Challenge must be a non-empty string")
        if len(public_key) != ED25519_KEY_LENGTH:
            raise InvalidInputError(f"Invalid Ed25519 public key length: {len(public_key)}")
        if len(signature) != ED25519_SIGNATURE_LENGTH:
            raise InvalidInputError(f"Invalid Ed25519 signature length: {len(signature)}")

        try:
            Ed25519PublicKey.from_public_bytes(bytes(public_key)).verify(
                bytes(signature), _challenge_digest(challenge),
            )
        except (InvalidSignature, ValueError):
            return False
        return True

    async def verify_presented_proof(
        self,
        chip_uid: str,
        challenge: str,
        signature: bytes,
    ) -> AuthResult:
        """
        Verify a proof produced elsewhere (e.g. on the phone holding the
        pendant). The challenge must be one this verifier issued and has
        not yet accepted. Attempts per chip are throttled when a limiter
        is configured; a throttled attempt does not consume the challenge.
        """
        validate_chip_uid(chip_uid)
        if self._limiter is not None and not self._limiter.hit(chip_uid):
            return self._finish(chip_uid, AuthState.REJECTED, RATE_LIMITED_ERROR)
        if not self._ledger.consume(challenge):
            return self._finish(chip_uid, AuthState.REJECTED, CHALLENGE_REJECTED_ERROR)

        resolved = await self._resolver.resolve(chip_uid)
        if resolved is None:
            return self._finish(chip_uid, AuthState.LOOKUP_FAILED, LOOKUP_FAILED_ERROR)

        if not self.verify(chip_uid, challenge, signature, resolved.public_key):
            return self._finish(chip_uid, AuthState.REJECTED, INVALID_SIGNATURE_ERROR)

        return AuthResult(
            authenticated=True,
            did=resolved.did,
            session_token=self._mint_session_token(chip_uid),
            state=self._record(chip_uid, AuthState.VERIFIED, source=resolved.source.value),
        )

    async def authenticate(
        self,
        pendant: PendantData,
        pin: str,
        challenge: str | None = None,
    ) -> AuthResult:
        """
        End-to-end authentication for a tapped pendant and an entered PIN.

        With no challenge a fresh one is issued. Malformed input raises
        InvalidInputError; every other failure is an unauthenticated result.
        """
        chip_uid = validate_chip_uid(pendant.chip_uid)
        if challenge is None:
            challenge = self.generate_challenge(chip_uid)

        # WAITING -> PROOF_GENERATED
        proof = self.prove_identity(chip_uid, pin, challenge)
        self._logger.debug("proof_generated", chip_uid=chip_uid)

        # proof.public_key is ignored from here on
        return await self.verify_presented_proof(chip_uid, challenge, proof.signature)

    # ─── Internals ──────────────────────────────────────────────────

    def _mint_session_token(self, chip_uid: str) -> str:
        return f"{self._config.session_token_prefix}_{chip_uid}_{now_ms()}"

    def _record(self, chip_uid: str, state: AuthState, **context: Any) -> AuthState:
        self._attempts += 1
        self._outcomes[state] = self._outcomes.get(state, 0) + 1
        if state is AuthState.VERIFIED:
            self._logger.info("authentication_verified", chip_uid=chip_uid, **context)
        else:
            self._logger.warning("authentication_failed", chip_uid=chip_uid, state=state.value)
        return state

    def _finish(self, chip_uid: str, state: AuthState, error: str) -> AuthResult:
        return AuthResult(
            authenticated=False,
            error=error,
            state=self._record(chip_uid, state),
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "attempts": self._attempts,
            "outcomes": {state.value: count for state, count in self._outcomes.items()},
            "ledger": self._ledger.stats,
            "limiter": self._limiter.stats if self._limiter else None,
        }
