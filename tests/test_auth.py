import sys
import os
import logging
import pytest
import paramiko
from unittest.mock import MagicMock

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from honeyssh.auth import AuthEngine, key_blob, key_fingerprint, load_whitelist


@pytest.fixture(scope="module")
def keys():
    return paramiko.RSAKey.generate(2048), paramiko.RSAKey.generate(2048)


def write_pub(path, key, comment="attacker@box"):
    path.write_text(f"{key.get_name()} {key.get_base64()} {comment}\n")


@pytest.fixture
def key_dir(tmp_path, keys):
    allowed, _ = keys
    write_pub(tmp_path / "allowed.pub", allowed)
    return tmp_path


class TestWhitelist:
    def test_loads_pub_files(self, key_dir, keys):
        allowed, other = keys
        whitelist = load_whitelist(str(key_dir))
        assert whitelist == frozenset({allowed.asbytes()})
        assert other.asbytes() not in whitelist

    def test_bad_entries_are_skipped(self, key_dir, keys, caplog):
        (key_dir / "garbage.pub").write_text("not a key at all\n")
        (key_dir / "empty.pub").write_text("")
        (key_dir / "notes.txt").write_text("ignored, wrong extension")
        write_pub(key_dir / "second.pub", keys[1])

        with caplog.at_level(logging.WARNING, logger="honeyssh"):
            whitelist = load_whitelist(str(key_dir))

        assert whitelist == frozenset({keys[0].asbytes(), keys[1].asbytes()})
        assert "garbage.pub" in caplog.text
        assert "empty.pub" in caplog.text

    def test_directory_name_is_not_a_pattern(self, tmp_path, keys):
        key_dir = tmp_path / "keys[prod]*"
        key_dir.mkdir()
        write_pub(key_dir / "ops.pub", keys[0])
        decoy = tmp_path / "keysd"
        decoy.mkdir()
        write_pub(decoy / "decoy.pub", keys[1])
        assert load_whitelist(str(key_dir)) == frozenset({keys[0].asbytes()})

    def test_missing_directory_is_empty(self, tmp_path):
        assert load_whitelist(str(tmp_path / "nope")) == frozenset()

    def test_whitelist_is_immutable(self, key_dir):
        whitelist = load_whitelist(str(key_dir))
        with pytest.raises(AttributeError):
            whitelist.add(b"x")


class TestFingerprint:
    def test_known_vector(self):
        # sha256("") in unpadded base64
        assert key_fingerprint(b"") == "SHA256:47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU"

    def test_pkey_and_blob_agree(self, keys):
        key = keys[0]
        assert key_fingerprint(key) == key_fingerprint(key.asbytes())
        assert key_blob(key) == key.asbytes()


class TestAuthEngine:
    @pytest.fixture
    def engine(self, keys):
        return AuthEngine({keys[0].asbytes()})

    def test_none_rejected_but_recorded(self, engine):
        assert engine.attempt('none', 'root') is False
        assert engine.credentials.user == 'root'
        assert engine.credentials.password is None

    def test_password_always_accepted(self, engine):
        assert engine.attempt('password', 'root', password='123456') is True
        assert engine.credentials.user == 'root'
        assert engine.credentials.password == '123456'

    def test_password_overwrites(self, engine):
        engine.attempt('password', 'root', password='first')
        engine.attempt('password', 'admin', password='')
        assert engine.credentials.user == 'admin'
        assert engine.credentials.password == ''

    def test_attempts_are_independent(self, engine):
        for _ in range(20):
            assert engine.attempt('none', 'root') is False
        assert engine.attempt('password', 'root', password='x') is True

    def test_whitelisted_key_accepted(self, engine, keys):
        assert engine.attempt('publickey', 'deploy', key=keys[0]) is True
        assert engine.credentials.user == 'deploy'
        assert engine.credentials.key_fingerprint == key_fingerprint(keys[0])

    def test_unknown_key_rejected(self, engine, keys):
        assert engine.attempt('publickey', 'deploy', key=keys[1]) is False
        assert engine.credentials.user == 'deploy'
        assert engine.credentials.key_fingerprint is None

    def test_key_match_is_byte_exact(self, engine, keys):
        blob = keys[0].asbytes()
        for variant in (blob + b"\x00", blob[:-1], blob[:-1] + bytes([blob[-1] ^ 1])):
            lookalike = MagicMock()
            lookalike.asbytes.return_value = variant
            assert engine.attempt('publickey', 'deploy', key=lookalike) is False
        assert engine.credentials.key_fingerprint is None

    def test_any_whitelist_entry_matches(self, keys):
        engine = AuthEngine([keys[0].asbytes(), keys[1].asbytes()])
        assert engine.attempt('publickey', 'a', key=keys[1]) is True

    def test_keyboard_interactive_rejected(self, engine):
        assert engine.attempt('keyboard-interactive', 'oracle') is False
        assert engine.credentials.user == 'oracle'

    def test_unknown_method_rejected(self, engine):
        assert engine.attempt('gssapi-with-mic', 'bob') is False
        assert engine.credentials.user == 'bob'

    def test_publickey_without_key(self, engine):
        assert engine.attempt('publickey', 'bob') is False

    def test_later_password_keeps_fingerprint(self, engine, keys):
        engine.attempt('publickey', 'deploy', key=keys[0])
        engine.attempt('password', 'root', password='pw')
        assert engine.credentials.key_fingerprint == key_fingerprint(keys[0])
        assert engine.credentials.user == 'root'
