"""CLI integration tests."""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path

import pytest
from conftest import FQRN, Identity, write_private_key
from typer.testing import CliRunner

from lettertrust import __version__
from lettertrust.app.adapters.http_fetcher import HttpFetcher
from lettertrust.cli import app, run
from lettertrust.trust.letter import Letter


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def repository(
    runner: CliRunner, override_settings, temp_dir: Path, master: Identity, signer: Identity
) -> Path:
    """Local repository directory holding a whitelist for ``signer``."""
    repo = temp_dir / "repo"
    result = runner.invoke(
        app,
        [
            "whitelist",
            "sign",
            "--fqrn",
            FQRN,
            "--key",
            str(master.key_path),
            "--from-certificate",
            str(signer.certificate_path),
            "--output",
            str(repo / ".cvmfswhitelist"),
        ],
    )
    assert result.exit_code == 0, result.output
    return repo


def _sign(runner: CliRunner, signer: Identity, text: str = "hello", *extra: str) -> str:
    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(signer.key_path),
            "-c",
            str(signer.certificate_path),
            "-t",
            text,
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    return result.output.strip().splitlines()[-1]


def _verify_args(master: Identity, repository: Path, *extra: str) -> list[str]:
    return [
        "letter",
        "-v",
        "-f",
        FQRN,
        "-k",
        str(master.public_key_path),
        "-r",
        str(repository),
        "-m",
        "60",
        *extra,
    ]


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_sign_and_verify_round_trip(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity
) -> None:
    envelope = _sign(runner, signer)

    result = runner.invoke(app, _verify_args(master, repository, "-t", envelope))

    assert result.exit_code == 0, result.output
    assert result.stdout == "hello\n"


def test_verify_reads_stdin(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity
) -> None:
    envelope = _sign(runner, signer, "from stdin")

    result = runner.invoke(app, _verify_args(master, repository), input=envelope + "\n")

    assert result.exit_code == 0, result.output
    assert result.stdout == "from stdin\n"


def test_sign_reads_stdin(
    runner: CliRunner, override_settings, repository: Path, master: Identity, signer: Identity
) -> None:
    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(signer.key_path),
            "-c",
            str(signer.certificate_path),
        ],
        input="piped message\n",
    )
    assert result.exit_code == 0, result.output

    verified = runner.invoke(
        app, _verify_args(master, repository, "-t", result.stdout.strip())
    )
    assert verified.stdout == "piped message\n"


def test_loop_mode(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity
) -> None:
    first = _sign(runner, signer, "one")
    second = _sign(runner, signer, "two!")

    result = runner.invoke(
        app, _verify_args(master, repository, "-l"), input=f"{first}\n{second}\n"
    )

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ["0", "3", "one", "0", "4", "two!"]


def test_untrusted_signer(
    runner: CliRunner, repository: Path, master: Identity, other_signer: Identity
) -> None:
    envelope = _sign(runner, other_signer)

    result = runner.invoke(app, _verify_args(master, repository, "-t", envelope))

    assert result.exit_code == 5
    assert "not_whitelisted" in result.output
    assert "hello" not in result.output


def test_blacklist_option(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity, temp_dir: Path
) -> None:
    blacklist = temp_dir / "blacklist"
    blacklist.write_text(f"# revoked\n{signer.fingerprint}\n")
    envelope = _sign(runner, signer)

    result = runner.invoke(
        app, ["--blacklist", str(blacklist), *_verify_args(master, repository, "-t", envelope)]
    )

    assert result.exit_code == 5
    assert "blacklisted" in result.output


def test_repository_mismatch_is_invalid_letter(
    runner: CliRunner, override_settings, temp_dir: Path, master: Identity, signer: Identity
) -> None:
    repo = temp_dir / "other"
    created = runner.invoke(
        app,
        [
            "whitelist",
            "sign",
            "-f",
            "other.org",
            "-k",
            str(master.key_path),
            "--fingerprint",
            signer.fingerprint,
            "-o",
            str(repo / ".cvmfswhitelist"),
        ],
    )
    assert created.exit_code == 0, created.output
    envelope = _sign(runner, signer)

    result = runner.invoke(
        app,
        [
            "letter",
            "-v",
            "-f",
            "other.org",
            "-k",
            str(master.public_key_path),
            "-r",
            str(repo),
            "-m",
            "60",
            "-t",
            envelope,
        ],
    )

    assert result.exit_code == 3
    assert "repository_mismatch" in result.output


def test_sign_and_verify_together_is_invalid(runner: CliRunner, override_settings) -> None:
    result = runner.invoke(app, ["letter", "-s", "-v", "-f", FQRN, "-k", "x"])
    assert result.exit_code == 1
    assert "sign + verify" in result.output


@pytest.mark.parametrize(
    "args",
    [
        ["letter", "-f", FQRN],
        ["letter", "-s", "-f", FQRN, "-k", "key.pem"],
        ["letter", "-v", "-f", FQRN, "-k", "pub.pem", "-m", "60"],
        ["letter", "-v", "-f", FQRN, "-k", "pub.pem", "-r", "/repo", "--max-age=-1"],
    ],
)
def test_missing_or_bad_options(runner: CliRunner, override_settings, args: list[str]) -> None:
    assert runner.invoke(app, args).exit_code == 1


@pytest.mark.parametrize(
    ("args", "flags"),
    [
        (["letter", "-v"], "-f, -k, -r, -m"),
        (["letter", "-v", "-f", FQRN, "-k", "pub.pem"], "-r, -m"),
        (["letter", "-s", "-k", "key.pem"], "-f, -c"),
    ],
)
def test_missing_options_are_listed(
    runner: CliRunner, override_settings, args: list[str], flags: str
) -> None:
    result = runner.invoke(app, args)

    assert result.exit_code == 1
    assert f"missing required option(s): {flags}" in result.output


def test_unknown_algorithm(runner: CliRunner, override_settings, signer: Identity) -> None:
    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(signer.key_path),
            "-c",
            str(signer.certificate_path),
            "-a",
            "md5",
            "-t",
            "hello",
        ],
    )
    assert result.exit_code == 1


def test_missing_whitelist(
    runner: CliRunner, override_settings, master: Identity, temp_dir: Path
) -> None:
    result = runner.invoke(app, _verify_args(master, temp_dir / "empty", "-t", "x"))

    assert result.exit_code == 2
    assert "fetch_error" in result.output


def test_offline_refuses_remote_whitelist(
    runner: CliRunner, override_settings, master: Identity
) -> None:
    result = runner.invoke(
        app,
        [
            "--offline",
            "letter",
            "-v",
            "-f",
            FQRN,
            "-k",
            str(master.public_key_path),
            "-r",
            "http://stratum1.example.org/cvmfs/example.org",
            "-m",
            "60",
            "-t",
            "x",
        ],
    )

    assert result.exit_code == 2
    assert "requires network access" in result.output


def test_sign_with_mismatched_key(
    runner: CliRunner, override_settings, signer: Identity, other_signer: Identity
) -> None:
    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(other_signer.key_path),
            "-c",
            str(signer.certificate_path),
            "-t",
            "hello",
        ],
    )
    assert result.exit_code == 2


def test_sign_prompts_for_password(
    runner: CliRunner,
    repository: Path,
    master: Identity,
    signer: Identity,
    temp_dir: Path,
) -> None:
    key_path = write_private_key(signer.key, temp_dir / "enc.key", password="s3cret")

    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(key_path),
            "-c",
            str(signer.certificate_path),
            "-t",
            "guarded",
        ],
        input="wrong\ns3cret\n",
    )
    assert result.exit_code == 0, result.output
    envelope = result.output.strip().splitlines()[-1]

    verified = runner.invoke(app, _verify_args(master, repository, "-t", envelope))
    assert verified.stdout == "guarded\n"


def test_sign_with_wrong_password_option(
    runner: CliRunner, override_settings, signer: Identity, temp_dir: Path
) -> None:
    key_path = write_private_key(signer.key, temp_dir / "enc.key", password="s3cret")

    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(key_path),
            "-c",
            str(signer.certificate_path),
            "-p",
            "wrong",
            "-t",
            "hello",
        ],
    )
    assert result.exit_code == 2


def test_fingerprint_command(runner: CliRunner, override_settings, signer: Identity) -> None:
    result = runner.invoke(app, ["fingerprint", str(signer.certificate_path)])
    assert result.exit_code == 0
    assert result.stdout.strip() == signer.fingerprint


def test_whitelist_show_json(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity
) -> None:
    result = runner.invoke(
        app,
        [
            "whitelist",
            "show",
            str(repository),
            "--fqrn",
            FQRN,
            "--key",
            str(master.public_key_path),
            "--json",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["schema_id"] == "whitelist"
    assert payload["fqrn"] == FQRN
    assert payload["fingerprints"] == [signer.fingerprint]
    assert payload["expired"] is False


def test_whitelist_show_requires_trust(runner: CliRunner, repository: Path) -> None:
    result = runner.invoke(app, ["whitelist", "show", str(repository), "--fqrn", FQRN])
    assert result.exit_code == 1


def test_blacklist_check(
    runner: CliRunner, override_settings, signer: Identity, other_signer: Identity, temp_dir: Path
) -> None:
    blacklist = temp_dir / "blacklist"
    blacklist.write_text(f"{signer.fingerprint}\n")

    listed = runner.invoke(app, ["--blacklist", str(blacklist), "blacklist", "check"])
    assert listed.exit_code == 0
    assert signer.fingerprint in listed.stdout

    clean = runner.invoke(
        app, ["--blacklist", str(blacklist), "blacklist", "check", other_signer.fingerprint]
    )
    assert clean.exit_code == 0

    revoked = runner.invoke(
        app, ["--blacklist", str(blacklist), "blacklist", "check", signer.fingerprint]
    )
    assert revoked.exit_code == 5


def test_run_maps_usage_errors_to_invalid_arguments(
    monkeypatch: pytest.MonkeyPatch, override_settings
) -> None:
    monkeypatch.setattr(sys, "argv", ["lettertrust", "letter", "--no-such-option"])

    with pytest.raises(SystemExit) as excinfo:
        run()

    assert excinfo.value.code == 1


@pytest.fixture
def closed_fetchers(monkeypatch: pytest.MonkeyPatch) -> list[HttpFetcher]:
    closed: list[HttpFetcher] = []
    monkeypatch.setattr(HttpFetcher, "close", lambda self: closed.append(self))
    return closed


def test_letter_commands_close_fetcher(
    runner: CliRunner,
    repository: Path,
    master: Identity,
    signer: Identity,
    temp_dir: Path,
    closed_fetchers: list[HttpFetcher],
) -> None:
    envelope = _sign(runner, signer)
    assert len(closed_fetchers) == 1

    trusted = runner.invoke(app, _verify_args(master, repository, "-t", envelope))
    assert trusted.exit_code == 0, trusted.output
    assert len(closed_fetchers) == 2

    unreachable = runner.invoke(app, _verify_args(master, temp_dir / "empty", "-t", envelope))
    assert unreachable.exit_code == 2
    assert len(closed_fetchers) == 3


def test_whitelist_show_closes_fetcher(
    runner: CliRunner,
    repository: Path,
    master: Identity,
    closed_fetchers: list[HttpFetcher],
) -> None:
    result = runner.invoke(
        app,
        [
            "whitelist",
            "show",
            str(repository),
            "--fqrn",
            FQRN,
            "--key",
            str(master.public_key_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert FQRN in result.stdout
    assert len(closed_fetchers) == 1


def test_sign_prompt_does_not_echo_password(
    runner: CliRunner, override_settings, signer: Identity, temp_dir: Path
) -> None:
    key_path = write_private_key(signer.key, temp_dir / "enc.key", password="s3cret")

    result = runner.invoke(
        app,
        [
            "letter",
            "-s",
            "-f",
            FQRN,
            "-k",
            str(key_path),
            "-c",
            str(signer.certificate_path),
            "-t",
            "guarded",
        ],
        input="s3cret\n",
    )

    assert result.exit_code == 0, result.output
    assert "s3cret" not in result.output
    assert Letter.decode(result.stdout.strip().splitlines()[-1]).payload == "guarded"


def test_non_hex_whitelist_digest_is_load_failure(
    runner: CliRunner, repository: Path, master: Identity, signer: Identity
) -> None:
    envelope = _sign(runner, signer)
    document = repository / ".cvmfswhitelist"
    document.write_bytes(
        re.sub(rb"^(Hsha[0-9]+:).*$", "\\g<1>é".encode("utf-8"), document.read_bytes(), flags=re.M)
    )

    result = runner.invoke(app, _verify_args(master, repository, "-t", envelope))

    assert result.exit_code == 2
    assert "malformed" in result.output
