"""Exceptions raised by the end-to-end encryption engine."""


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class KeyGenerationError(CryptoError):
    """The cryptographic provider could not produce a key pair."""
    pass


class MalformedKeyError(CryptoError):
    """Serialized key text does not decode to a valid key of the expected role."""
    pass


class RecipientKeyInvalidError(CryptoError):
    """A recipient's public key is absent or cannot be imported."""
    pass


class EnvelopeFormatError(CryptoError):
    """Message content does not parse as an envelope."""
    pass


class RecipientKeyMissingError(CryptoError):
    """The envelope carries no wrapped session key for this user."""
    pass


class SessionKeyUnwrapError(CryptoError):
    """The wrapped session key could not be decrypted with the private key."""
    pass


class PayloadDecryptionError(CryptoError):
    """The message payload failed authentication or is not valid text."""
    pass


class WrongPasswordError(CryptoError):
    """An escrow package did not decrypt under the given password.

    Raised for a wrong password, a corrupted package and a tampered package
    alike; the three are deliberately indistinguishable.
    """
    pass
