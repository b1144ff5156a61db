"""Tests for the local certificate blacklist."""

from pathlib import Path

import pytest
from conftest import Identity

from lettertrust.errors import BlacklistError
from lettertrust.trust.blacklist import Blacklist


def test_missing_file_is_empty(temp_dir: Path) -> None:
    blacklist = Blacklist.load(temp_dir / "nope")
    assert len(blacklist) == 0
    assert blacklist.source == temp_dir / "nope"


def test_parse_skips_comments_blank_and_revision_lines(signer: Identity) -> None:
    text = "\n".join(
        [
            "# revoked after key compromise",
            "",
            "<42",
            signer.fingerprint.replace(":", "").lower(),
            "   ",
        ]
    )

    blacklist = Blacklist.parse(text)

    assert len(blacklist) == 1
    assert blacklist.contains(signer.fingerprint)
    assert signer.fingerprint in blacklist


def test_malformed_line_fails_closed(temp_dir: Path, signer: Identity) -> None:
    path = temp_dir / "blacklist"
    path.write_text(f"{signer.fingerprint}\nnot-a-fingerprint\n")

    with pytest.raises(BlacklistError, match=r"blacklist:2"):
        Blacklist.load(path)


def test_contains_ignores_garbage_queries(signer: Identity) -> None:
    blacklist = Blacklist.parse(signer.fingerprint)
    assert not blacklist.contains("garbage")
    assert 42 not in blacklist


def test_unreadable_path_is_blacklist_error(temp_dir: Path) -> None:
    # A directory cannot be read as text.
    with pytest.raises(BlacklistError):
        Blacklist.load(temp_dir)
