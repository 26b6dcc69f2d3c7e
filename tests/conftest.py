import pathlib
import typing

import attr
import click.testing
import pytest

import kmscreds.cli
from kmscreds.store import Store, new_store
from kmscreds.utils import RemoteKeyError

ROOT = pathlib.Path(__file__).parent
TESTDATA = ROOT / 'testdata'

KEY_ID = 'my-key-id'
CONTEXT: typing.Dict[str, typing.Optional[str]] = {'ABC': None}
KEY_PLAINTEXT = b'-abcdefabcdefabcdefabcdefabcdef-'
KEY_CIPHERTEXT = b'ciphertextblob'
NONCE = b'abcdefabcdefabcdefabcdef'
PLAINTEXT = 'abcdef'
CIPHERTEXT = ('EJK1];Y2lwaGVydGV4dGJsb2I=;'
              'YWJjZGVmYWJjZGVmYWJjZGVmYWJjZGVmlPmP6IWfK7WJMuXVi8aQ7TZu8vCkVA==')


@attr.s
class FakeKMS:
    """An in-memory key service that always hands out the same data key."""

    key_id: str = attr.ib(default=KEY_ID)
    context: typing.Dict[str, typing.Optional[str]] = attr.ib(
        factory=lambda: dict(CONTEXT))
    key_ciphertext: bytes = attr.ib(default=KEY_CIPHERTEXT)
    key_plaintext: bytes = attr.ib(default=KEY_PLAINTEXT)
    error: typing.Optional[str] = attr.ib(default=None)
    calls: typing.List[str] = attr.ib(factory=list)

    def generate_data_key(self, key_id, context):
        self.calls.append('generate_data_key')
        if self.error:
            raise RemoteKeyError(self.error)
        assert key_id == self.key_id
        assert context == self.context
        return self.key_ciphertext, self.key_plaintext

    def decrypt(self, key_ciphertext, context):
        self.calls.append('decrypt')
        if self.error:
            raise RemoteKeyError(self.error)
        assert key_ciphertext == self.key_ciphertext
        assert context == self.context
        return self.key_plaintext


def const_random(size: int) -> bytes:
    assert size == len(NONCE)
    return NONCE


def error_random(size: int) -> bytes:
    raise OSError("testing error")


@pytest.fixture()
def kms() -> FakeKMS:
    return FakeKMS()


@pytest.fixture()
def store() -> Store:
    return new_store(KEY_ID, CONTEXT)


@pytest.fixture()
def invoke(kms, monkeypatch, tmp_path):
    """Run a command in a temporary directory, using the fake key service."""
    monkeypatch.setattr(kmscreds.cli, 'KMS', lambda **kwargs: kms)
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv('KMSCREDS_PATH', raising=False)

    def invoke_func(arguments: typing.Sequence[str], input=None, fail=False):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(kmscreds.cli.main, [*arguments], input=input)
        if fail:
            assert result.exit_code != 0, result.output
        elif result.exit_code != 0:
            message = f"Command kmscreds {' '.join(arguments)} failed"
            raise Exception(message + '\n' + result.output) from result.exception
        return result.output.splitlines()

    return invoke_func


@pytest.fixture()
def initialised(invoke):
    invoke(['init', '--kms-key-id', KEY_ID, '--encryption-context', 'ABC'])
    return pathlib.Path('.credentials.json')
