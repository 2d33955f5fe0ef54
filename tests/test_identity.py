from pathlib import Path

import pytest

from dbprep.identity import build_input_fingerprint, sha256_bytes, sha256_file, short_token


def test_fingerprint_is_stable_for_equal_payloads() -> None:
    payload_a = {
        "driver": "sqlite",
        "migrations": True,
        "files": [["alembic/env.py", "abc"], ["alembic/versions/0001.py", "def"]],
    }
    payload_b = {
        "files": [["alembic/env.py", "abc"], ["alembic/versions/0001.py", "def"]],
        "migrations": True,
        "driver": "sqlite",
    }

    assert build_input_fingerprint(payload_a) == build_input_fingerprint(payload_b)


def test_fingerprint_treats_list_order_as_significant() -> None:
    seeders_ab = {"seeders": ["authors", "posts"]}
    seeders_ba = {"seeders": ["posts", "authors"]}

    assert build_input_fingerprint(seeders_ab) != build_input_fingerprint(seeders_ba)


def test_sha256_file_matches_sha256_bytes(tmp_path: Path) -> None:
    path = tmp_path / "dump.sql"
    path.write_bytes(b"CREATE TABLE author (id INTEGER PRIMARY KEY);")

    assert sha256_file(path) == sha256_bytes(b"CREATE TABLE author (id INTEGER PRIMARY KEY);")


def test_short_token_rejects_out_of_range_lengths() -> None:
    digest = sha256_bytes(b"x")

    assert short_token(digest, 6) == digest[:6]
    with pytest.raises(ValueError):
        short_token(digest, 0)
    with pytest.raises(ValueError):
        short_token(digest, len(digest) + 1)
