"""lettertrust CLI application with Typer."""

import sys
from contextlib import closing
from datetime import timedelta
from pathlib import Path
from typing import Annotated, NoReturn

import click
import typer

from lettertrust import __version__
from lettertrust.bootstrap import ApplicationContainer, bootstrap_application
from lettertrust.config import get_settings, set_settings
from lettertrust.crypto.signature import SignatureManager, fingerprint
from lettertrust.errors import (
    ConfigError,
    ExitCode,
    LetterTrustError,
    WhitelistError,
)
from lettertrust.trust.blacklist import Blacklist
from lettertrust.trust.decision import TrustResult
from lettertrust.trust.whitelist import (
    TrustPolicy,
    WhitelistLoader,
    build_whitelist_document,
)
from lettertrust.utils.hashing import parse_hash_algorithm
from lettertrust.utils.terminal import prompt_key_password, read_line

app = typer.Typer(
    name="lettertrust",
    help="Sign and verify repository-bound letters against certificate white/blacklists",
    add_completion=False,
    no_args_is_help=True,
)
whitelist_app = typer.Typer(help="Whitelist publishing and inspection")
app.add_typer(whitelist_app, name="whitelist")
blacklist_app = typer.Typer(help="Local certificate blacklist")
app.add_typer(blacklist_app, name="blacklist")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"lettertrust version {__version__}")
        raise typer.Exit()


def _fail(message: str, code: ExitCode) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=int(code))


def _report_rejection(result: TrustResult) -> None:
    reason = result.letter_failure.value if result.letter_failure else result.outcome.value
    typer.secho(f"{reason}: {result.detail}", fg=typer.colors.YELLOW, err=True)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True),
    ] = None,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Refuse network fetches (file:// and paths only)"),
    ] = False,
    blacklist: Annotated[
        Path | None,
        typer.Option("--blacklist", help="Override the local blacklist file"),
    ] = None,
) -> None:
    """lettertrust - certificate trust and signed letters for repositories."""
    # Update settings with CLI flags
    settings = get_settings()
    if offline:
        settings.offline = True
    if blacklist:
        settings.blacklist_path = blacklist
    set_settings(settings)


@app.command("letter")
def letter(
    sign: Annotated[bool, typer.Option("-s", "--sign", help="Sign a letter")] = False,
    verify: Annotated[bool, typer.Option("-v", "--verify", help="Verify a letter")] = False,
    fqrn: Annotated[
        str | None,
        typer.Option("-f", "--fqrn", help="Repository name the letter is bound to"),
    ] = None,
    key: Annotated[
        str | None,
        typer.Option(
            "-k",
            "--key",
            help="Private key (sign) or trusted public key(s), colon-separated (verify)",
        ),
    ] = None,
    certificate: Annotated[
        Path | None,
        typer.Option("-c", "--certificate", help="Signing certificate (sign)"),
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("-p", "--password", help="Private key password (sign)"),
    ] = None,
    algorithm: Annotated[
        str | None,
        typer.Option("-a", "--algorithm", help="Hash algorithm (sign)"),
    ] = None,
    text: Annotated[
        str | None,
        typer.Option("-t", "--text", help="Message; read one line from stdin if omitted"),
    ] = None,
    repository_url: Annotated[
        str | None,
        typer.Option("-r", "--repository-url", help="Repository URL(s), ';'-separated (verify)"),
    ] = None,
    ca_crl: Annotated[
        Path | None,
        typer.Option("-z", "--ca-crl", help="Trusted CA/CRL bundle or directory (verify)"),
    ] = None,
    max_age: Annotated[
        int | None,
        typer.Option("-m", "--max-age", help="Maximum letter age in seconds (verify)"),
    ] = None,
    loop: Annotated[
        bool,
        typer.Option("-l", "--loop", help="Verify one letter per input line until EOF"),
    ] = False,
) -> None:
    """Sign a letter, or verify letters against the repository whitelist.

    Exit codes: 0 ok, 1 invalid arguments, 2 failed to load certificate, key,
    trust material or whitelist, 3 letter invalid, 4 whitelist expired,
    5 certificate not trusted.
    """
    if sign and verify:
        _fail("invalid option combination (sign + verify)", ExitCode.INVALID_ARGUMENTS)
    if not sign and not verify:
        _fail("either -s (sign) or -v (verify) is required", ExitCode.INVALID_ARGUMENTS)

    if verify:
        if fqrn is None or key is None or repository_url is None or max_age is None:
            _fail_missing({"-f": fqrn, "-k": key, "-r": repository_url, "-m": max_age})
        if max_age < 0:
            _fail("max age must not be negative", ExitCode.INVALID_ARGUMENTS)
        with closing(bootstrap_application()) as container:
            _verify_letters(
                container,
                fqrn,
                key,
                repository_url,
                max_age,
                ca_crl=ca_crl,
                text=text,
                loop=loop,
            )
    else:
        if fqrn is None or key is None or certificate is None:
            _fail_missing({"-f": fqrn, "-k": key, "-c": certificate})
        with closing(bootstrap_application()) as container:
            _sign_letter(
                container,
                fqrn,
                Path(key),
                certificate,
                password=password,
                algorithm=algorithm,
                text=text,
            )


def _fail_missing(options: dict[str, object]) -> NoReturn:
    missing = [flag for flag, value in options.items() if value is None]
    _fail(f"missing required option(s): {', '.join(missing)}", ExitCode.INVALID_ARGUMENTS)


def _verify_letters(
    container: ApplicationContainer,
    fqrn: str,
    public_keys: str,
    repository_url: str,
    max_age: int,
    *,
    ca_crl: Path | None,
    text: str | None,
    loop: bool,
) -> NoReturn:
    service = container.letter_service
    try:
        decision = service.open_verifier(
            fqrn,
            repository_url,
            max_age,
            public_keys=public_keys,
            ca_crl_path=ca_crl,
        )
    except WhitelistError as exc:
        _fail(
            f"failed to load whitelist ({exc.failure.value}): {exc.message}",
            ExitCode.LOAD_FAILED,
        )
    except LetterTrustError as exc:
        _fail(f"failed to load trust material: {exc}", ExitCode.LOAD_FAILED)

    exit_code = service.run_verification(
        decision,
        stream=sys.stdin,
        emit=typer.echo,
        text=text,
        loop=loop,
        report=_report_rejection,
    )
    raise typer.Exit(code=int(exit_code))


def _sign_letter(
    container: ApplicationContainer,
    fqrn: str,
    key_path: Path,
    certificate: Path,
    *,
    password: str | None,
    algorithm: str | None,
    text: str | None,
) -> None:
    service = container.letter_service
    try:
        hash_algorithm = parse_hash_algorithm(algorithm or container.settings.default_hash_algorithm)
    except ConfigError as exc:
        _fail(str(exc), ExitCode.INVALID_ARGUMENTS)

    try:
        manager = service.load_signing_identity(
            certificate,
            key_path,
            password,
            prompt=prompt_key_password if password is None else None,
        )
    except LetterTrustError as exc:
        _fail(f"failed to load signing identity: {exc}", ExitCode.LOAD_FAILED)

    if text is None:
        text = read_line(sys.stdin) or ""

    try:
        envelope = service.sign(fqrn, text, manager, hash_algorithm)
    except ConfigError as exc:
        _fail(str(exc), ExitCode.INVALID_ARGUMENTS)
    except LetterTrustError as exc:
        _fail(f"signing failed: {exc}", ExitCode.LOAD_FAILED)
    typer.echo(envelope)


@app.command("fingerprint")
def fingerprint_command(
    certificate: Annotated[Path, typer.Argument(help="PEM or DER certificate")],
) -> None:
    """Print the fingerprint used in white- and blacklists."""
    manager = SignatureManager()
    try:
        cert = manager.load_certificate(certificate)
    except LetterTrustError as exc:
        _fail(f"failed to load certificate: {exc}", ExitCode.LOAD_FAILED)
    typer.echo(fingerprint(cert))


@whitelist_app.command("sign")
def whitelist_sign(
    fqrn: Annotated[str, typer.Option("--fqrn", "-f", help="Repository name")],
    key: Annotated[Path, typer.Option("--key", "-k", help="Master private key")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Destination file (defaults to stdout)"),
    ] = None,
    fingerprints: Annotated[
        list[str] | None,
        typer.Option("--fingerprint", help="Fingerprint to whitelist (repeatable)"),
    ] = None,
    certificates: Annotated[
        list[Path] | None,
        typer.Option("--from-certificate", help="Whitelist this certificate (repeatable)"),
    ] = None,
    signer_certificate: Annotated[
        Path | None,
        typer.Option("--certificate", "-c", help="Embed signer certificate for CA/CRL trust"),
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("--password", "-p", help="Master key password"),
    ] = None,
    validity_days: Annotated[
        int,
        typer.Option("--validity-days", min=1, help="Days until the whitelist expires"),
    ] = 30,
    algorithm: Annotated[
        str,
        typer.Option("--algorithm", "-a", help="Hash algorithm"),
    ] = "sha256",
) -> None:
    """Create and sign a whitelist document."""
    manager = SignatureManager()
    entries = list(fingerprints or [])
    try:
        for path in certificates or []:
            entries.append(fingerprint(SignatureManager().load_certificate(path)))
        if signer_certificate is not None:
            manager.load_certificate(signer_certificate)
        manager.load_private_key(key, password)
        document = build_whitelist_document(
            fqrn,
            entries,
            manager,
            validity=timedelta(days=validity_days),
            hash_algorithm=algorithm,
            include_certificate=signer_certificate is not None,
        )
    except ConfigError as exc:
        _fail(str(exc), ExitCode.INVALID_ARGUMENTS)
    except LetterTrustError as exc:
        _fail(f"failed to sign whitelist: {exc}", ExitCode.LOAD_FAILED)

    if output is None:
        typer.echo(document.decode("utf-8"), nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(document)
    typer.secho(f"Whitelist for {fqrn} written to {output}", fg=typer.colors.GREEN, err=True)


@whitelist_app.command("show")
def whitelist_show(
    repository_url: Annotated[str, typer.Argument(help="Repository URL(s), ';'-separated")],
    fqrn: Annotated[str, typer.Option("--fqrn", "-f", help="Expected repository name")],
    key: Annotated[
        str | None,
        typer.Option("--key", "-k", help="Trusted public key(s), colon-separated"),
    ] = None,
    ca_crl: Annotated[
        Path | None,
        typer.Option("--ca-crl", "-z", help="Trusted CA/CRL bundle or directory"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Fetch, verify and print a repository whitelist."""
    manager = SignatureManager()
    with closing(bootstrap_application()) as container:
        try:
            if key:
                manager.load_trusted_public_keys(key)
            if ca_crl is not None:
                manager.load_trusted_ca_crl(ca_crl)
            if not manager.has_trusted_material():
                _fail("give --key and/or --ca-crl", ExitCode.INVALID_ARGUMENTS)
            loader = WhitelistLoader(
                fqrn=fqrn,
                fetcher=container.fetcher,
                signature_manager=manager,
                filename=container.settings.whitelist_filename,
                policy=TrustPolicy(container.settings.trust_policy),
            )
            whitelist = loader.load(repository_url)
        except WhitelistError as exc:
            _fail(
                f"failed to load whitelist ({exc.failure.value}): {exc.message}",
                ExitCode.LOAD_FAILED,
            )
        except LetterTrustError as exc:
            _fail(f"failed to load trust material: {exc}", ExitCode.LOAD_FAILED)

    if json_output:
        from lettertrust.utils.cli_output import json_response

        typer.echo(
            json_response(
                "whitelist",
                1,
                fqrn=whitelist.fqrn,
                issued_at=whitelist.issued_at.isoformat(),
                expires_at=whitelist.expires_at.isoformat(),
                expired=whitelist.is_expired(),
                fingerprints=sorted(whitelist.fingerprints),
                signer_fingerprint=whitelist.signer_fingerprint,
            )
        )
        return

    status = "EXPIRED" if whitelist.is_expired() else "valid"
    typer.echo(f"Repository: {whitelist.fqrn}")
    typer.echo(f"Issued:     {whitelist.issued_at.isoformat()}")
    typer.echo(f"Expires:    {whitelist.expires_at.isoformat()} ({status})")
    for entry in sorted(whitelist.fingerprints):
        typer.echo(f"  {entry}")


@blacklist_app.command("check")
def blacklist_check(
    fingerprints: Annotated[
        list[str] | None,
        typer.Argument(help="Fingerprints to look up; omit to list the blacklist"),
    ] = None,
) -> None:
    """Validate the local blacklist and look up fingerprints.

    Exits with 5 when any given fingerprint is blacklisted.
    """
    path = get_settings().get_blacklist_path()
    try:
        blacklist = Blacklist.load(path)
    except LetterTrustError as exc:
        _fail(str(exc), ExitCode.LOAD_FAILED)

    if not fingerprints:
        typer.echo(f"{len(blacklist)} blacklisted fingerprint(s) in {path}")
        for entry in sorted(blacklist.fingerprints):
            typer.echo(f"  {entry}")
        return

    revoked = [entry for entry in fingerprints if blacklist.contains(entry)]
    for entry in fingerprints:
        typer.echo(f"{entry}: {'blacklisted' if entry in revoked else 'not blacklisted'}")
    if revoked:
        raise typer.Exit(code=int(ExitCode.NOT_TRUSTED))


def run() -> None:
    """Console entry point mapping usage errors to exit code 1."""
    try:
        code = app(standalone_mode=False)
    except click.UsageError as exc:
        exc.show()
        sys.exit(int(ExitCode.INVALID_ARGUMENTS))
    except click.ClickException as exc:
        exc.show()
        sys.exit(exc.exit_code)
    except click.Abort:
        typer.echo("Aborted!", err=True)
        sys.exit(int(ExitCode.INVALID_ARGUMENTS))
    sys.exit(code if isinstance(code, int) else 0)


if __name__ == "__main__":
    run()
