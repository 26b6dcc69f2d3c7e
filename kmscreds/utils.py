import pathlib
import re
import typing

import click

NAME_PATTERN = re.compile(r'^[a-z][a-z0-9_]*$')


class KmsCredsException(click.ClickException):
    pass


class RemoteKeyError(KmsCredsException):
    """The key service call failed."""


class RandomSourceError(KmsCredsException):
    """The random source could not produce a nonce."""


class FormatError(KmsCredsException):
    """A ciphertext does not match the wire format."""


class KeySizeError(KmsCredsException):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected key size of {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class AuthenticationError(KmsCredsException):
    """A ciphertext failed authentication."""


class DecodeError(KmsCredsException):
    pass


class ReadError(KmsCredsException):
    pass


class WriteError(KmsCredsException):
    pass


class DuplicateNameError(KmsCredsException):
    pass


class NotFoundError(KmsCredsException):
    pass


class CredentialEncryptError(KmsCredsException):
    pass


class CredentialDecryptError(KmsCredsException):
    pass


class FormatterNotFound(KmsCredsException):
    pass


def valid_name(name: str) -> str:
    """Check a credential name can be used as an environment variable."""
    if not NAME_PATTERN.fullmatch(name):
        raise KmsCredsException(
            f"Invalid name {name!r}, names should match {NAME_PATTERN.pattern}")
    return name


def valid_credentials_path(path: pathlib.Path) -> pathlib.Path:
    if path.is_dir():
        raise KmsCredsException(f"{path} is a directory")
    if not path.exists():
        raise KmsCredsException(
            f"{path} does not exist, create it with the 'init' command")
    return path


def read_plaintext(stream: typing.TextIO) -> str:
    """
    Read a secret from a stream.

    A single trailing newline is removed, as most ways of piping text
    into a command will add one.
    """
    try:
        text = stream.read()
    except OSError as error:
        raise ReadError(f"Unable to read plaintext: {error}") from error

    if text.endswith('\n'):
        text = text[:-1]

    if not text:
        raise KmsCredsException("No plaintext was read")

    return text
