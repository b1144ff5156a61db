"""Sign and verify flows behind the letter command."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TextIO

import click

from lettertrust.app.ports import FetcherPort
from lettertrust.config import Settings
from lettertrust.crypto.signature import SignatureManager
from lettertrust.errors import ExitCode, KeyDecryptError, KeyMismatchError, LoadError
from lettertrust.trust.blacklist import Blacklist
from lettertrust.trust.decision import TrustDecision, TrustResult
from lettertrust.trust.letter import sign_letter
from lettertrust.trust.whitelist import TrustPolicy, WhitelistHolder, WhitelistLoader
from lettertrust.utils.terminal import read_line

logger = logging.getLogger(__name__)

PasswordPrompt = Callable[[], str]


@dataclass(slots=True)
class LetterService:
    """Wire signature managers, trust state and the input loop for one run."""

    settings: Settings
    fetcher: FetcherPort

    # ------------------------------------------------------------------ #
    # Signing
    # ------------------------------------------------------------------ #

    def load_signing_identity(
        self,
        certificate_path: Path,
        key_path: Path,
        password: str | None = None,
        *,
        prompt: PasswordPrompt | None = None,
    ) -> SignatureManager:
        """Load certificate and private key into a fresh manager.

        Without ``password``, an encrypted key triggers up to
        ``settings.password_attempts`` calls to ``prompt``.

        Raises:
            LoadError: If certificate or key cannot be read or parsed
            KeyDecryptError: If no attempt decrypted the key
            KeyMismatchError: If key and certificate do not belong together
        """
        manager = SignatureManager()
        manager.load_certificate(certificate_path)

        if password is not None or prompt is None:
            manager.load_private_key(key_path, password)
        else:
            try:
                manager.load_private_key(key_path, None)
            except KeyDecryptError:
                self._prompt_for_key(manager, key_path, prompt)

        if not manager.keys_match():
            raise KeyMismatchError(
                f"the private key doesn't seem to match your certificate ({manager.last_error})"
            )
        return manager

    def _prompt_for_key(
        self, manager: SignatureManager, key_path: Path, prompt: PasswordPrompt
    ) -> None:
        attempts = self.settings.password_attempts
        for attempt in range(1, attempts + 1):
            try:
                password = prompt()
            except (EOFError, click.exceptions.Abort) as exc:
                raise KeyDecryptError("no password entered") from exc
            try:
                manager.load_private_key(key_path, password)
                return
            except KeyDecryptError:
                logger.warning(
                    "failed to load private key (%s), attempt %d of %d",
                    manager.last_error,
                    attempt,
                    attempts,
                )
        raise KeyDecryptError(f"failed to load private key after {attempts} attempts")

    def sign(
        self,
        fqrn: str,
        text: str,
        manager: SignatureManager,
        hash_algorithm: str | None = None,
    ) -> str:
        """Return the envelope for ``text`` signed for ``fqrn``."""
        algorithm = hash_algorithm or self.settings.default_hash_algorithm
        return sign_letter(fqrn, text, manager, algorithm)

    # ------------------------------------------------------------------ #
    # Verification
    # ------------------------------------------------------------------ #

    def open_verifier(
        self,
        fqrn: str,
        repository_url: str,
        max_age: int,
        *,
        public_keys: str | None = None,
        ca_crl_path: Path | None = None,
        blacklist_path: Path | None = None,
    ) -> TrustDecision:
        """Load trust material, the whitelist and the blacklist for ``fqrn``.

        Public keys may fail to load only when a CA/CRL bundle is given.

        Raises:
            LoadError: On unusable trust material, whitelist or blacklist
        """
        manager = SignatureManager()
        if ca_crl_path is not None:
            manager.load_trusted_ca_crl(ca_crl_path)

        try:
            manager.load_trusted_public_keys(public_keys or "")
        except LoadError as exc:
            if ca_crl_path is None:
                raise
            logger.info("Continuing with CA/CRL trust only: %s", exc)

        loader = WhitelistLoader(
            fqrn=fqrn,
            fetcher=self.fetcher,
            signature_manager=manager,
            filename=self.settings.whitelist_filename,
            policy=TrustPolicy(self.settings.trust_policy),
        )
        holder = WhitelistHolder.open(
            loader,
            repository_url,
            refresh_window_seconds=self.settings.refresh_window_seconds,
        )
        blacklist = Blacklist.load(blacklist_path or self.settings.get_blacklist_path())

        return TrustDecision(
            fqrn=fqrn,
            max_age=max_age,
            signature_manager=manager,
            whitelist=holder,
            blacklist=blacklist,
        )

    def run_verification(
        self,
        decision: TrustDecision,
        *,
        stream: TextIO,
        emit: Callable[[str], None],
        text: str | None = None,
        loop: bool = False,
        report: Callable[[TrustResult], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ExitCode:
        """Verify ``text`` and/or lines from ``stream`` and emit results.

        In loop mode every processed line emits its exit code and, when
        trusted, the payload length in bytes followed by the payload; the
        loop ends at end of input and returns the last exit code. Otherwise
        one letter is processed and only a trusted payload is emitted.
        """
        exit_code = ExitCode.OK
        pending = text
        while True:
            envelope = pending if pending is not None else read_line(stream)
            pending = None
            if envelope is None:
                if not loop:
                    logger.error("no letter on standard input")
                    return ExitCode.LETTER_INVALID
                return exit_code

            result = decision.evaluate(envelope, clock() if clock is not None else None)
            exit_code = result.exit_code
            if report is not None and not result.trusted:
                report(result)

            if loop:
                emit(str(int(exit_code)))
                if result.trusted:
                    emit(str(len((result.payload or "").encode("utf-8"))))
            if result.trusted:
                emit(result.payload or "")

            if not loop:
                return exit_code
