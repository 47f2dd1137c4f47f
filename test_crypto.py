#!/usr/bin/env python3
"""
Tests for the encryption engine: codec, key pairs, password vault,
message envelopes and the local key store.
"""

import json
import sys
from unittest.mock import patch

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from e2ee import (
    CryptoError,
    CryptoProvider,
    Envelope,
    EnvelopeFormatError,
    KeyGenerationError,
    KeyPair,
    KeyPairManager,
    KeyRole,
    LocalKeyStore,
    MalformedKeyError,
    MemoryKeyStorage,
    MessageCipher,
    PasswordKeyVault,
    PayloadDecryptionError,
    Recipient,
    RecipientKeyInvalidError,
    RecipientKeyMissingError,
    SessionKeyUnwrapError,
    WrongPasswordError,
    canonical_user_id,
    decode_text,
    encode_bytes,
)
from e2ee.primitives import NONCE_SIZE

# RSA generation is slow, so the three parties are created once
manager = KeyPairManager()
ALICE = manager.generate()
BOB = manager.generate()
CAROL = manager.generate()
PUB_A = manager.export_key(ALICE.public_key, KeyRole.PUBLIC)
PUB_B = manager.export_key(BOB.public_key, KeyRole.PUBLIC)
PUB_C = manager.export_key(CAROL.public_key, KeyRole.PUBLIC)
PRIV_A = manager.export_key(ALICE.private_key, KeyRole.PRIVATE)


def flip_bit(text: str, index: int) -> str:
    """Flip the lowest bit of one decoded byte and re-encode"""
    data = bytearray(decode_text(text))
    data[index] ^= 0x01
    return encode_bytes(bytes(data))


def counting_random_source():
    """Deterministic random source for provider injection"""
    counter = [0]

    def source(length: int) -> bytes:
        start = counter[0]
        counter[0] += length
        return bytes((start + i) % 256 for i in range(length))
    return source


def forge_envelope(plaintext: bytes, session_key: bytes, wrapped_key: bytes = None) -> str:
    """Envelope for Alice (user 1) assembled directly from primitives"""
    provider = CryptoProvider()
    nonce = provider.random_bytes(NONCE_SIZE)
    ciphertext = provider.aes_gcm_encrypt(session_key, nonce, plaintext)
    wrapped = provider.rsa_oaep_encrypt(ALICE.public_key, session_key if wrapped_key is None else wrapped_key)
    return Envelope(
        ciphertext=encode_bytes(ciphertext),
        iv=encode_bytes(nonce),
        keys={"1": encode_bytes(wrapped)},
    ).to_json()


def test_canonical_user_id():
    """Test user id canonicalization"""
    print("Testing user id canonicalization...")

    assert canonical_user_id(7) == "7"
    assert canonical_user_id("7") == "7"
    assert canonical_user_id(" 007 ") == "7"
    assert canonical_user_id("alice") == "alice"
    assert canonical_user_id(" alice\n") == "alice"
    assert canonical_user_id("-3") == "-3"

    # Not a decimal number, so an opaque id rather than a parse error
    assert canonical_user_id("--5") == "--5"
    assert canonical_user_id("5-") == "5-"

    for bad in (True, "", "   ", None, 1.5):
        try:
            canonical_user_id(bad)
            assert False, f"Should have rejected {bad!r}"
        except ValueError:
            pass

    print("✓ User id canonicalization works")


def test_codec():
    """Test base64 text codec"""
    print("Testing codec...")

    data = bytes(range(256))
    assert decode_text(encode_bytes(data)) == data
    assert encode_bytes(b"") == ""

    for bad in ("not base64!", "abc", 42):
        try:
            decode_text(bad)
            assert False, f"Should have rejected {bad!r}"
        except ValueError:
            pass

    print("✓ Codec works")


def test_key_generation():
    """Test RSA key pair parameters"""
    print("Testing key generation...")

    assert isinstance(ALICE, KeyPair)
    assert ALICE.private_key.key_size == 2048
    assert ALICE.public_key.public_numbers().e == 65537
    assert ALICE.matches()
    assert not KeyPair(public_key=ALICE.public_key, private_key=BOB.private_key).matches()

    print("✓ Key generation works")


def test_key_generation_unavailable():
    """Test that a missing RSA backend surfaces as KeyGenerationError"""
    print("Testing key generation failure...")

    with patch("e2ee.primitives.rsa.generate_private_key", side_effect=UnsupportedAlgorithm("no RSA")):
        try:
            KeyPairManager().generate()
            assert False, "Should have raised KeyGenerationError"
        except KeyGenerationError:
            pass

    print("✓ Key generation failure is reported")


def test_key_export_import():
    """Test key serialization"""
    print("Testing key export/import...")

    public_key = manager.import_key(PUB_A, KeyRole.PUBLIC)
    private_key = manager.import_key(PRIV_A, "private")

    # Deterministic and lossless
    assert manager.export_key(public_key, KeyRole.PUBLIC) == PUB_A
    assert manager.export_key(private_key, KeyRole.PRIVATE) == PRIV_A
    assert manager.export_key(ALICE.public_key, "public") == PUB_A

    # Standard DER encodings
    der = decode_text(PUB_A)
    assert serialization.load_der_public_key(der).public_numbers() == ALICE.public_key.public_numbers()

    pair = manager.import_pair(PUB_A, PRIV_A)
    assert pair.matches()

    print("✓ Key export/import works")


def test_malformed_keys():
    """Test rejection of invalid key text"""
    print("Testing malformed keys...")

    ed_public = Ed25519PrivateKey.generate().public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    cases = [
        ("garbage!", KeyRole.PUBLIC),
        (encode_bytes(b"not a key"), KeyRole.PUBLIC),
        (PUB_A, KeyRole.PRIVATE),
        (PRIV_A, KeyRole.PUBLIC),
        (encode_bytes(ed_public), KeyRole.PUBLIC),
    ]
    for text, role in cases:
        try:
            manager.import_key(text, role)
            assert False, f"Should have rejected key as {role.value}"
        except MalformedKeyError:
            pass

    try:
        manager.import_pair(PUB_B, PRIV_A)
        assert False, "Should have rejected mismatched pair"
    except MalformedKeyError:
        pass

    print("✓ Malformed keys are rejected")


def test_vault_round_trip():
    """Test password escrow of a private key"""
    print("Testing password vault...")

    vault = PasswordKeyVault()
    package = vault.protect(PRIV_A, "correct")

    combined = decode_text(package)
    assert len(combined) == 16 + 12 + len(PRIV_A.encode()) + 16, "Wrong package layout"
    assert vault.recover(package, "correct") == PRIV_A

    print("✓ Password vault works")


def test_vault_wrong_password():
    """Test the escrow recovery scenario with a wrong password"""
    print("Testing wrong password...")

    vault = PasswordKeyVault()
    package = vault.protect(PRIV_A, "correct")

    try:
        vault.recover(package, "wrong")
        assert False, "Should have raised WrongPasswordError"
    except WrongPasswordError:
        pass

    assert vault.recover(package, "correct") == PRIV_A

    print("✓ Wrong password is rejected")


def test_vault_freshness():
    """Test that each escrow uses a fresh salt and nonce"""
    print("Testing vault freshness...")

    vault = PasswordKeyVault()
    first = vault.protect(PRIV_A, "pw")
    second = vault.protect(PRIV_A, "pw")

    assert first != second, "Packages should differ"
    assert decode_text(first)[:16] != decode_text(second)[:16], "Salt reused"
    assert vault.recover(first, "pw") == vault.recover(second, "pw") == PRIV_A

    print("✓ Vault freshness works")


def test_vault_tampering():
    """Test that corrupted packages fail like a wrong password"""
    print("Testing vault tampering...")

    vault = PasswordKeyVault()
    package = vault.protect("secret key text", "pw")
    size = len(decode_text(package))

    for index in (0, 20, 28, size - 1):
        try:
            vault.recover(flip_bit(package, index), "pw")
            assert False, f"Tampering at byte {index} not detected"
        except WrongPasswordError:
            pass

    truncated = encode_bytes(decode_text(package)[:40])
    for bad in (truncated, "not base64!", ""):
        try:
            vault.recover(bad, "pw")
            assert False, "Should have raised WrongPasswordError"
        except WrongPasswordError:
            pass

    print("✓ Vault tampering is detected")


def test_vault_injected_provider():
    """Test deterministic escrow with an injected random source"""
    print("Testing injected provider...")

    first = PasswordKeyVault(CryptoProvider(counting_random_source())).protect("key", "pw")
    second = PasswordKeyVault(CryptoProvider(counting_random_source())).protect("key", "pw")

    assert first == second, "Same randomness should give the same package"
    assert decode_text(first)[:16] == bytes(range(16))
    assert PasswordKeyVault().recover(first, "pw") == "key"

    print("✓ Injected provider works")


def test_vault_rewrap():
    """Test re-encrypting an escrow package under a new password"""
    print("Testing vault rewrap...")

    vault = PasswordKeyVault()
    package = vault.rewrap(vault.protect(PRIV_A, "old"), "old", "new")
    assert vault.recover(package, "new") == PRIV_A

    try:
        vault.recover(package, "old")
        assert False, "Old password should no longer work"
    except WrongPasswordError:
        pass

    print("✓ Vault rewrap works")


def test_message_scenario():
    """Test Alice and Bob exchanging a message"""
    print("Testing message scenario...")

    cipher = MessageCipher()
    envelope = cipher.encrypt("hello", [Recipient(1, PUB_A), Recipient(2, PUB_B)])

    assert cipher.decrypt(envelope, 2, BOB.private_key) == "hello"
    assert cipher.decrypt(envelope, 1, ALICE.private_key) == "hello"

    payload = json.loads(envelope)
    assert set(payload) == {"ciphertext", "iv", "keys"}
    assert set(payload["keys"]) == {"1", "2"}
    assert len(decode_text(payload["iv"])) == 12

    print("✓ Message scenario works")


def test_recipient_isolation():
    """Test that a non-recipient cannot decrypt"""
    print("Testing recipient isolation...")

    cipher = MessageCipher()
    envelope = cipher.encrypt("hello", [Recipient(1, PUB_A), Recipient(2, PUB_B)])

    try:
        cipher.decrypt(envelope, 3, CAROL.private_key)
        assert False, "Should have raised RecipientKeyMissingError"
    except RecipientKeyMissingError:
        pass

    # Carol's key under Bob's id does not unwrap Bob's session key
    try:
        cipher.decrypt(envelope, 2, CAROL.private_key)
        assert False, "Should have raised SessionKeyUnwrapError"
    except SessionKeyUnwrapError:
        pass

    print("✓ Recipient isolation works")


def test_recipient_forms_and_ids():
    """Test accepted recipient forms and string/numeric id lookup"""
    print("Testing recipient forms...")

    cipher = MessageCipher()
    envelope = cipher.encrypt("zażółć 🔒", [
        {"userId": 1, "publicKey": PUB_A},
        ("2", PUB_B),
        Recipient("carol", PUB_C),
    ])

    assert cipher.decrypt(envelope, "1", ALICE.private_key) == "zażółć 🔒"
    assert cipher.decrypt(envelope, 2, BOB.private_key) == "zażółć 🔒"
    assert cipher.decrypt(envelope, "carol", CAROL.private_key) == "zażółć 🔒"

    print("✓ Recipient forms work")


def test_each_message_uses_fresh_keys():
    """Test that identical messages produce different envelopes"""
    print("Testing per-message freshness...")

    cipher = MessageCipher()
    first = json.loads(cipher.encrypt("same", [Recipient(1, PUB_A)]))
    second = json.loads(cipher.encrypt("same", [Recipient(1, PUB_A)]))

    assert first["iv"] != second["iv"]
    assert first["ciphertext"] != second["ciphertext"]

    print("✓ Per-message freshness works")


def test_invalid_recipients():
    """Test that one bad recipient fails the whole envelope"""
    print("Testing invalid recipients...")

    cipher = MessageCipher()
    for bad_key in (None, "", "garbage!", PRIV_A):
        try:
            cipher.encrypt("hi", [Recipient(1, PUB_A), Recipient(2, bad_key)])
            assert False, "Should have raised RecipientKeyInvalidError"
        except RecipientKeyInvalidError:
            pass

    for recipients in ([], [Recipient(1, PUB_A), Recipient("1", PUB_B)]):
        try:
            cipher.encrypt("hi", recipients)
            assert False, "Should have raised ValueError"
        except ValueError:
            pass

    print("✓ Invalid recipients are rejected")


def test_envelope_tampering():
    """Test that tampered envelopes never decrypt"""
    print("Testing envelope tampering...")

    cipher = MessageCipher()
    payload = json.loads(cipher.encrypt("hello", [Recipient(1, PUB_A)]))
    size = len(decode_text(payload["ciphertext"]))

    for index in (0, size - 1):
        tampered = dict(payload, ciphertext=flip_bit(payload["ciphertext"], index))
        try:
            cipher.decrypt(json.dumps(tampered), 1, ALICE.private_key)
            assert False, "Tampering not detected"
        except PayloadDecryptionError:
            pass

    tampered = dict(payload, iv=flip_bit(payload["iv"], 0))
    try:
        cipher.decrypt(json.dumps(tampered), 1, ALICE.private_key)
        assert False, "IV tampering not detected"
    except PayloadDecryptionError:
        pass

    tampered = dict(payload, keys={"1": flip_bit(payload["keys"]["1"], 5)})
    try:
        cipher.decrypt(json.dumps(tampered), 1, ALICE.private_key)
        assert False, "Wrapped key tampering not detected"
    except SessionKeyUnwrapError:
        pass

    print("✓ Envelope tampering is detected")


def test_malformed_envelopes():
    """Test that non-envelope content raises EnvelopeFormatError"""
    print("Testing malformed envelopes...")

    cipher = MessageCipher()
    cases = [
        "hello, plain text",
        "",
        "[]",
        "{}",
        '{"ciphertext": "AA==", "iv": "AA=="}',
        '{"ciphertext": 1, "iv": "AA==", "keys": {}}',
        '{"ciphertext": "AA==", "iv": "AA==", "keys": []}',
        '{"ciphertext": "AA==", "iv": "AA==", "keys": {"1": 5}}',
        '{"ciphertext": "AA==", "iv": "AA==", "keys": {}, "v": 2}',
        None,
    ]
    for text in cases:
        try:
            cipher.decrypt(text, 1, ALICE.private_key)
            assert False, f"Should have rejected {text!r}"
        except EnvelopeFormatError:
            pass

    print("✓ Malformed envelopes are rejected")


def test_envelope_version_field():
    """Test that an explicit version 1 envelope is accepted"""
    print("Testing envelope version...")

    cipher = MessageCipher()
    payload = json.loads(cipher.encrypt("versioned", [Recipient(1, PUB_A)]))
    payload["v"] = 1

    assert cipher.decrypt(json.dumps(payload), 1, ALICE.private_key) == "versioned"
    assert Envelope.from_json(json.dumps(payload)).to_json() == json.dumps(
        {k: payload[k] for k in ("ciphertext", "iv", "keys")}, separators=(",", ":")
    )

    print("✓ Envelope version works")


def test_session_key_unwrap_errors():
    """Test that unusable session keys raise SessionKeyUnwrapError"""
    print("Testing session key unwrap errors...")

    cipher = MessageCipher()

    # AES-128 session keys from other clients are accepted
    assert cipher.decrypt(forge_envelope(b"short key", bytes(range(16))), 1, ALICE.private_key) == "short key"

    for wrapped_key in (b"short", bytes(33)):
        try:
            cipher.decrypt(forge_envelope(b"hi", bytes(32), wrapped_key), 1, ALICE.private_key)
            assert False, f"Should have rejected a {len(wrapped_key)}-byte session key"
        except SessionKeyUnwrapError:
            pass

    envelope = cipher.encrypt("for alice", [Recipient(1, PUB_A)])
    for key in (None, ALICE.public_key, Ed25519PrivateKey.generate()):
        try:
            cipher.decrypt(envelope, 1, key)
            assert False, f"Should have rejected {type(key).__name__}"
        except SessionKeyUnwrapError:
            pass

    print("✓ Session key unwrap errors are reported")


def test_payload_corruption():
    """Test that corrupted iv, ciphertext or plaintext raise PayloadDecryptionError"""
    print("Testing payload corruption...")

    cipher = MessageCipher()
    payload = json.loads(cipher.encrypt("payload", [Recipient(1, PUB_A)]))

    cases = [
        ("iv", encode_bytes(bytes(16))),
        ("iv", encode_bytes(bytes(11))),
        ("iv", "!!"),
        ("ciphertext", "!!"),
        ("ciphertext", encode_bytes(b"abc")),
    ]
    for field, value in cases:
        try:
            cipher.decrypt(json.dumps(dict(payload, **{field: value})), 1, ALICE.private_key)
            assert False, f"Should have rejected {field}={value!r}"
        except PayloadDecryptionError:
            pass

    # Authenticates, but is not UTF-8 text
    try:
        cipher.decrypt(forge_envelope(b"\xff\xfe\xfd", bytes(32)), 1, ALICE.private_key)
        assert False, "Should have rejected non UTF-8 plaintext"
    except PayloadDecryptionError:
        pass

    print("✓ Payload corruption is reported")


def test_random_source_length():
    """Test that a short random source is rejected"""
    print("Testing random source length...")

    provider = CryptoProvider(random_source=lambda length: bytes(length - 1))
    operations = [
        lambda: provider.random_bytes(NONCE_SIZE),
        lambda: MessageCipher(provider).encrypt("hi", [Recipient(1, PUB_A)]),
        lambda: PasswordKeyVault(provider).protect(PRIV_A, "pw"),
    ]
    for operation in operations:
        try:
            operation()
            assert False, "Should have raised CryptoError"
        except CryptoError:
            pass

    print("✓ Short random source is rejected")


def test_local_key_store():
    """Test the local key store state transitions"""
    print("Testing local key store...")

    store = LocalKeyStore(MemoryKeyStorage())
    assert not store.has_key()
    assert store.get() is None
    assert store.get_public_key_text() is None

    store.put(ALICE)
    assert store.has_key()
    loaded = store.get()
    assert manager.export_key(loaded.private_key, KeyRole.PRIVATE) == PRIV_A
    assert store.get_public_key_text() == PUB_A

    # Regeneration overwrites
    store.put(BOB)
    assert store.get_public_key_text() == PUB_B

    # A mismatched pair is never persisted
    try:
        store.put_serialized(PUB_C, PRIV_A)
        assert False, "Should have raised MalformedKeyError"
    except MalformedKeyError:
        pass
    assert store.get_public_key_text() == PUB_B

    pair = store.put_serialized(PUB_A, PRIV_A)
    assert pair.matches()
    assert store.get_public_key_text() == PUB_A

    print("✓ Local key store works")


def run_all_tests():
    """Run all tests"""
    print("\n" + "="*50)
    print("Running Cryptographic Tests")
    print("="*50 + "\n")

    try:
        test_canonical_user_id()
        test_codec()
        test_key_generation()
        test_key_generation_unavailable()
        test_key_export_import()
        test_malformed_keys()
        test_vault_round_trip()
        test_vault_wrong_password()
        test_vault_freshness()
        test_vault_tampering()
        test_vault_injected_provider()
        test_vault_rewrap()
        test_message_scenario()
        test_recipient_isolation()
        test_recipient_forms_and_ids()
        test_each_message_uses_fresh_keys()
        test_invalid_recipients()
        test_envelope_tampering()
        test_malformed_envelopes()
        test_envelope_version_field()
        test_session_key_unwrap_errors()
        test_payload_corruption()
        test_random_source_length()
        test_local_key_store()

        print("\n" + "="*50)
        print("✓ All tests passed!")
        print("="*50 + "\n")
        return 0

    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        return 1
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
