"""
Envelope encryption of single credentials.

Each call to encrypt asks the key service for a new data key, seals the
plaintext with it using NaCl's secretbox, and returns text in the form:

    EJK1];<base64(key ciphertext)>;<base64(nonce + sealed box)>
"""

import base64
import binascii
import logging
import re
import typing

import attr
import nacl.exceptions
import nacl.secret
import nacl.utils

from .kms import Context, KeyService
from .utils import (
    AuthenticationError,
    DecodeError,
    FormatError,
    KeySizeError,
    RandomSourceError,
    RemoteKeyError,
)

log = logging.getLogger(__name__)

VERSION_TAG = 'EJK1];'
KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE
NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE
MAC_SIZE = nacl.secret.SecretBox.MACBYTES

PATTERN = re.compile(
    re.escape(VERSION_TAG) + r'([A-Za-z0-9+/=]+);([A-Za-z0-9+/=]+)')

RandomSource = typing.Callable[[int], bytes]


def b64decode(segment: str) -> bytes:
    try:
        return base64.b64decode(segment, validate=True)
    except binascii.Error as error:
        raise FormatError(f"Invalid base64 in encoded string: {error}") from error


def decode(text: str) -> typing.Tuple[bytes, bytes]:
    """Split encoded text into the key ciphertext and the nonce-prefixed box."""
    match = PATTERN.fullmatch(text)
    if match is None:
        raise FormatError("Invalid format for encoded string")

    key_ciphertext = b64decode(match.group(1))
    payload = b64decode(match.group(2))

    if len(payload) < NONCE_SIZE + MAC_SIZE:
        raise FormatError(
            f"Encoded payload is too short: expected at least "
            f"{NONCE_SIZE + MAC_SIZE} bytes, got {len(payload)}")

    return key_ciphertext, payload


def encode(key_ciphertext: bytes, payload: bytes) -> str:
    return ''.join((
        VERSION_TAG,
        base64.b64encode(key_ciphertext).decode('ascii'),
        ';',
        base64.b64encode(payload).decode('ascii'),
    ))


@attr.s(frozen=True)
class Cipher:
    client: KeyService = attr.ib()
    kms_key_id: str = attr.ib()
    encryption_context: Context = attr.ib()
    random: RandomSource = attr.ib(default=nacl.utils.random, repr=False)

    def nonce(self) -> bytes:
        try:
            nonce = self.random(NONCE_SIZE)
        except Exception as error:
            raise RandomSourceError(f"Unable to generate nonce: {error}") from error

        if len(nonce) != NONCE_SIZE:
            raise RandomSourceError(
                f"Unable to generate nonce: expected {NONCE_SIZE} bytes, "
                f"got {len(nonce)}")
        return nonce

    def encrypt(self, plaintext: str) -> str:
        log.debug(f"Generating data key for encryption with {self.kms_key_id}")
        try:
            key_ciphertext, key_plaintext = self.client.generate_data_key(
                self.kms_key_id, self.encryption_context)
        except RemoteKeyError as error:
            raise RemoteKeyError(
                f"Unable to generate data key: {error.message}") from error

        if len(key_plaintext) != KEY_SIZE:
            raise KeySizeError(KEY_SIZE, len(key_plaintext))

        nonce = self.nonce()
        box = nacl.secret.SecretBox(key_plaintext)
        payload = box.encrypt(plaintext.encode('utf-8'), nonce)

        return encode(key_ciphertext, bytes(payload))

    def decrypt(self, text: str) -> str:
        key_ciphertext, payload = decode(text)

        log.debug(f"Decrypting data key with {self.kms_key_id}")
        try:
            key_plaintext = self.client.decrypt(
                key_ciphertext, self.encryption_context)
        except RemoteKeyError as error:
            raise RemoteKeyError(
                f"Unable to decrypt key ciphertext: {error.message}") from error

        if len(key_plaintext) != KEY_SIZE:
            raise KeySizeError(KEY_SIZE, len(key_plaintext))

        box = nacl.secret.SecretBox(key_plaintext)
        try:
            opened = box.decrypt(payload[NONCE_SIZE:], payload[:NONCE_SIZE])
        except nacl.exceptions.CryptoError as error:
            raise AuthenticationError(
                "Unable to decrypt ciphertext: authentication failed") from error

        try:
            return opened.decode('utf-8')
        except UnicodeDecodeError as error:
            raise DecodeError(
                f"Decrypted plaintext is not valid text: {error}") from error
