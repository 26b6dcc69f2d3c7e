import pathlib
import typing

from .kms import KMS, KeyService
from .store import Store


def load(path: pathlib.Path) -> Store:
    return Store.load(pathlib.Path(path))


def export(
        path: pathlib.Path,
        client: typing.Optional[KeyService] = None) -> typing.Dict[str, str]:
    """Decrypt every credential in a file, returning a name -> plaintext map."""
    store = load(path)
    items = store.export_plaintext(client if client is not None else KMS())
    return {item.name: item.plaintext for item in items}
