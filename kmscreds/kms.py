import logging
import typing

import attr
import boto3
import botocore.exceptions

from .utils import RemoteKeyError

log = logging.getLogger(__name__)

Context = typing.Mapping[str, typing.Optional[str]]
DataKey = typing.Tuple[bytes, bytes]

KEY_SPEC = 'AES_256'


class KeyService(typing.Protocol):
    def generate_data_key(self, key_id: str, context: Context) -> DataKey:
        ...

    def decrypt(self, key_ciphertext: bytes, context: Context) -> bytes:
        ...


def request_context(context: Context) -> typing.Dict[str, str]:
    """KMS only accepts string values, so null entries are left out."""
    return {k: v for k, v in context.items() if v is not None}


@attr.s(frozen=True)
class KMS:
    profile: typing.Optional[str] = attr.ib(default=None)
    region: typing.Optional[str] = attr.ib(default=None)
    _clients: typing.Dict[str, typing.Any] = attr.ib(factory=dict, repr=False)

    @property
    def client(self):
        if 'kms' not in self._clients:
            log.debug(f"Creating KMS client (profile={self.profile}, "
                      f"region={self.region})")
            try:
                session = boto3.session.Session(
                    profile_name=self.profile,
                    region_name=self.region)
                self._clients['kms'] = session.client('kms')
            except botocore.exceptions.BotoCoreError as error:
                log.error(f"Unable to create KMS client: {error}")
                raise RemoteKeyError(
                    f"Unable to create KMS client: {error}") from error
        return self._clients['kms']

    def generate_data_key(self, key_id: str, context: Context) -> DataKey:
        log.debug(f"Generating data key with {key_id}")
        try:
            response = self.client.generate_data_key(
                KeyId=key_id,
                KeySpec=KEY_SPEC,
                EncryptionContext=request_context(context))
        except (botocore.exceptions.BotoCoreError,
                botocore.exceptions.ClientError) as error:
            log.error(f"KMS GenerateDataKey failed: {error}")
            raise RemoteKeyError(str(error)) from error
        return response['CiphertextBlob'], response['Plaintext']

    def decrypt(self, key_ciphertext: bytes, context: Context) -> bytes:
        log.debug("Decrypting data key")
        try:
            response = self.client.decrypt(
                CiphertextBlob=key_ciphertext,
                EncryptionContext=request_context(context))
        except (botocore.exceptions.BotoCoreError,
                botocore.exceptions.ClientError) as error:
            log.error(f"KMS Decrypt failed: {error}")
            raise RemoteKeyError(str(error)) from error
        return response['Plaintext']
