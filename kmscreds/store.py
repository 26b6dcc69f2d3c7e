import datetime
import json
import logging
import os
import pathlib
import tempfile
import typing

import attr

from .cipher import Cipher, RandomSource
from .kms import Context, KeyService
from .utils import (
    CredentialDecryptError,
    CredentialEncryptError,
    DecodeError,
    DuplicateNameError,
    KmsCredsException,
    NAME_PATTERN,
    NotFoundError,
    ReadError,
    WriteError,
)

log = logging.getLogger(__name__)

VERSION = 1
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def now() -> datetime.datetime:
    """The current UTC time, truncated to whole seconds."""
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime.datetime) -> str:
    return value.astimezone(datetime.timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: typing.Any, field: str) -> datetime.datetime:
    if not isinstance(value, str):
        raise DecodeError(f"Unable to decode Store: {field} should be a timestamp")
    try:
        parsed = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as error:
        raise DecodeError(
            f"Unable to decode Store: {field} is not a valid timestamp") from error
    if parsed.tzinfo is None:
        raise DecodeError(f"Unable to decode Store: {field} has no timezone")
    return parsed.astimezone(datetime.timezone.utc)


@attr.s(frozen=True, kw_only=True)
class Credential:
    name: str = attr.ib()
    description: str = attr.ib(default='')
    added_at: datetime.datetime = attr.ib()
    rotated_at: typing.Optional[datetime.datetime] = attr.ib(default=None)
    ciphertext: str = attr.ib(repr=False)

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            'name': self.name,
            'description': self.description,
            'added_at': format_timestamp(self.added_at),
            'rotated_at': (format_timestamp(self.rotated_at)
                           if self.rotated_at else None),
            'ciphertext': self.ciphertext,
        }

    @classmethod
    def from_dict(cls, data: typing.Any) -> 'Credential':
        if not isinstance(data, dict):
            raise DecodeError("Unable to decode Store: credentials should be objects")

        name = data.get('name')
        if not isinstance(name, str) or not name:
            raise DecodeError("Unable to decode Store: credential without a name")
        if not NAME_PATTERN.fullmatch(name):
            raise DecodeError(
                f"Unable to decode Store: invalid credential name {name!r}")

        description = data.get('description', '')
        if not isinstance(description, str):
            raise DecodeError(
                f"Unable to decode Store: description of {name} should be a string")

        ciphertext = data.get('ciphertext')
        if not isinstance(ciphertext, str):
            raise DecodeError(
                f"Unable to decode Store: ciphertext of {name} should be a string")

        added_at = parse_timestamp(data.get('added_at'), f"added_at of {name}")
        rotated_at = None
        if data.get('rotated_at') is not None:
            rotated_at = parse_timestamp(data['rotated_at'], f"rotated_at of {name}")
            if rotated_at < added_at:
                raise DecodeError(
                    f"Unable to decode Store: {name} was rotated before it was added")

        return cls(
            name=name,
            description=description,
            added_at=added_at,
            rotated_at=rotated_at,
            ciphertext=ciphertext)


@attr.s(frozen=True, kw_only=True)
class PlaintextItem:
    name: str = attr.ib()
    plaintext: str = attr.ib(repr=False)


@attr.s(frozen=True, kw_only=True)
class Store:
    kms_key_id: str = attr.ib()
    encryption_context: typing.Dict[str, typing.Optional[str]] = attr.ib(factory=dict)
    version: int = attr.ib(default=VERSION)
    credentials: typing.List[Credential] = attr.ib(factory=list)

    def __iter__(self) -> typing.Iterator[Credential]:
        return iter(self.credentials)

    def __len__(self) -> int:
        return len(self.credentials)

    def cipher(
            self,
            client: KeyService,
            random: typing.Optional[RandomSource] = None) -> Cipher:
        if random is None:
            return Cipher(client, self.kms_key_id, self.encryption_context)
        return Cipher(client, self.kms_key_id, self.encryption_context, random)

    def contains(self, name: str) -> bool:
        return any(credential.name == name for credential in self.credentials)

    def index(self, name: str) -> int:
        for index, credential in enumerate(self.credentials):
            if credential.name == name:
                return index
        raise NotFoundError(f"No credential named {name}")

    def find(self, name: str) -> Credential:
        return self.credentials[self.index(name)]

    def add(
            self,
            client: KeyService,
            plaintext: str,
            name: str,
            description: str = '',
            random: typing.Optional[RandomSource] = None) -> Credential:
        """
        Encrypt a plaintext and append it as a new credential.

        The store is only modified once encryption has succeeded.
        """
        if self.contains(name):
            raise DuplicateNameError(
                f"A credential named {name} already exists")

        log.debug(f"Encrypting new credential {name}")
        ciphertext = self._encrypt(client, plaintext, random)
        credential = Credential(
            name=name,
            description=description,
            added_at=now(),
            rotated_at=None,
            ciphertext=ciphertext)
        self.credentials.append(credential)
        log.info(f"Added credential {name}")
        return credential

    def rotate(
            self,
            client: KeyService,
            name: str,
            plaintext: str,
            random: typing.Optional[RandomSource] = None) -> Credential:
        """Replace the secret value of an existing credential."""
        index = self.index(name)

        log.debug(f"Encrypting rotated credential {name}")
        ciphertext = self._encrypt(client, plaintext, random)
        credential = attr.evolve(
            self.credentials[index],
            ciphertext=ciphertext,
            rotated_at=now())
        self.credentials[index] = credential
        log.info(f"Rotated credential {name}")
        return credential

    def set_description(self, name: str, description: str) -> Credential:
        index = self.index(name)
        credential = attr.evolve(self.credentials[index], description=description)
        self.credentials[index] = credential
        return credential

    def remove(self, name: str) -> Credential:
        credential = self.credentials.pop(self.index(name))
        log.info(f"Removed credential {name}")
        return credential

    def decrypt(self, client: KeyService, name: str) -> str:
        credential = self.find(name)
        try:
            return self.cipher(client).decrypt(credential.ciphertext)
        except KmsCredsException as error:
            raise CredentialDecryptError(
                f"Unable to decrypt credential {name}: {error.message}") from error

    def export_plaintext(self, client: KeyService) -> typing.List[PlaintextItem]:
        """
        Decrypt every credential, in the order they were added.

        Either every credential is decrypted or an exception is raised and
        no plaintext is returned.
        """
        cipher = self.cipher(client)
        items: typing.List[PlaintextItem] = []
        log.info(f"Decrypting {len(self.credentials)} credentials")
        for credential in self.credentials:
            log.debug(f"Decrypting credential {credential.name}")
            try:
                plaintext = cipher.decrypt(credential.ciphertext)
            except KmsCredsException as error:
                raise CredentialDecryptError(
                    f"Unable to decrypt credential {credential.name}: "
                    f"{error.message}") from error
            items.append(PlaintextItem(name=credential.name, plaintext=plaintext))
        return items

    def _encrypt(
            self,
            client: KeyService,
            plaintext: str,
            random: typing.Optional[RandomSource]) -> str:
        try:
            return self.cipher(client, random).encrypt(plaintext)
        except KmsCredsException as error:
            raise CredentialEncryptError(
                f"Unable to encrypt credential: {error.message}") from error

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            'kms_key_id': self.kms_key_id,
            'version': self.version,
            'encryption_context': dict(self.encryption_context),
            'credentials': [c.to_dict() for c in self.credentials],
        }

    @classmethod
    def from_dict(cls, data: typing.Any) -> 'Store':
        if not isinstance(data, dict):
            raise DecodeError("Unable to decode Store: expected a JSON object")

        kms_key_id = data.get('kms_key_id')
        if not isinstance(kms_key_id, str) or not kms_key_id:
            raise DecodeError("Unable to decode Store: kms_key_id is missing")

        version = data.get('version')
        if not isinstance(version, int) or isinstance(version, bool) \
                or version != VERSION:
            raise DecodeError(
                f"Unable to decode Store: unsupported version {version!r}")

        context = data.get('encryption_context')
        if context is None:
            context = {}
        if not isinstance(context, dict) or not all(
                isinstance(v, str) or v is None for v in context.values()):
            raise DecodeError(
                "Unable to decode Store: encryption_context should map "
                "strings to strings or null")

        raw_credentials = data.get('credentials')
        if raw_credentials is None:
            raw_credentials = []
        if not isinstance(raw_credentials, list):
            raise DecodeError("Unable to decode Store: credentials should be a list")

        credentials = [Credential.from_dict(c) for c in raw_credentials]
        names = [c.name for c in credentials]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DecodeError(
                f"Unable to decode Store: duplicate credentials {', '.join(duplicates)}")

        return cls(
            kms_key_id=kms_key_id,
            encryption_context=context,
            version=version,
            credentials=credentials)

    @classmethod
    def load(cls, path: pathlib.Path) -> 'Store':
        log.debug(f"Loading credentials from {path}")
        try:
            text = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as error:
            raise ReadError(f"Unable to read file {path}: {error}") from error

        try:
            data = json.loads(text)
        except ValueError as error:
            raise DecodeError(f"Unable to decode Store: {error}") from error

        return cls.from_dict(data)

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + '\n'

    def save(self, path: pathlib.Path) -> None:
        """
        Write the store to a temporary file and move it over the path.

        The existing file is left untouched if anything goes wrong.
        """
        log.debug(f"Saving {len(self.credentials)} credentials to {path}")
        text = self.dumps()
        tmp: typing.Optional[str] = None
        try:
            fd, tmp = tempfile.mkstemp(
                dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
            if path.exists():
                os.chmod(tmp, path.stat().st_mode & 0o777)
            os.replace(tmp, path)
        except OSError as error:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise WriteError(f"Unable to write file {path}: {error}") from error


def new_store(kms_key_id: str, encryption_context: Context) -> Store:
    return Store(
        kms_key_id=kms_key_id,
        encryption_context=dict(encryption_context),
        version=VERSION,
        credentials=[])
