import functools
import logging
import os.path
import pathlib
import typing

import click

from . import __doc__, __version__
from .formatters import FORMATTERS, formatter
from .kms import KMS
from .store import Credential, Store, format_timestamp, new_store
from .utils import (
    CredentialDecryptError,
    DuplicateNameError,
    KmsCredsException,
    read_plaintext,
    valid_credentials_path,
    valid_name,
)

log = logging.getLogger(__name__)


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def styled_path(path: pathlib.Path) -> str:
    return click.style(rel(path), fg='green')


def styled_name(credential: Credential) -> str:
    return click.style(credential.name, fg='cyan')


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


def parse_context(ctx, param, values: typing.Sequence[str]):
    """Parse KEY=VALUE pairs, where a bare KEY has a null value."""
    context: typing.Dict[str, typing.Optional[str]] = {}
    for value in values:
        key, sep, item = value.partition('=')
        if not key:
            raise click.BadParameter(f"{value!r} should be in the form KEY=VALUE")
        context[key] = item if sep else None
    return context


def load(path: pathlib.Path) -> Store:
    return Store.load(valid_credentials_path(path))


path_option = click.option(
    '--path',
    type=PathType(dir_okay=False),
    envvar='KMSCREDS_PATH',
    default='.credentials.json',
    show_default=True,
    help="The path of the credentials file.")

name_argument = click.argument(
    'name',
    type=click.STRING,
    required=True)

plaintext_option = click.option(
    '-i', '--input', 'stream',
    type=click.File('r'),
    default='-',
    help="File to read the plaintext from, defaults to stdin.")


@click.group(help=__doc__)
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '--profile',
    envvar='AWS_PROFILE',
    default=None,
    help="AWS profile used to reach KMS.")
@click.option(
    '--region',
    envvar='AWS_REGION',
    default=None,
    help="AWS region used to reach KMS.")
@click.pass_context
def main(
        ctx,
        debug: bool,
        profile: typing.Optional[str],
        region: typing.Optional[str]):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))
    ctx.obj = KMS(profile=profile, region=region)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"kmscreds {__version__}")


@main.command()
@path_option
@click.option(
    '--kms-key-id',
    required=True,
    help="The KMS key used to generate data keys for every credential.")
@click.option(
    '--encryption-context', 'context',
    metavar='KEY=VALUE',
    multiple=True,
    callback=parse_context,
    help="Encryption context bound to every credential, may be repeated.")
def init(
        path: pathlib.Path,
        kms_key_id: str,
        context: typing.Dict[str, typing.Optional[str]]):
    """Create a new, empty credentials file."""
    if path.exists():
        raise KmsCredsException(f"{rel(path)} already exists")

    new_store(kms_key_id, context).save(path)
    click.echo(f"Created new credentials file at: {styled_path(path)}")


@main.command()
@path_option
@name_argument
@plaintext_option
@click.option(
    '--description',
    default='',
    help="Description of the credential.")
@click.pass_obj
def add(
        kms: KMS,
        path: pathlib.Path,
        name: str,
        stream: typing.TextIO,
        description: str):
    """
    Add a credential to a credentials file.

    The plaintext is read from stdin unless --input is given.
    """
    valid_name(name)
    store = load(path)

    if store.contains(name):
        raise DuplicateNameError(
            "A credential with the same name already exists. "
            "Use the `rotate` command")

    plaintext = read_plaintext(stream)

    click.echo(f"KMS: Encrypting plaintext for {name}")
    store.add(kms, plaintext, name, description)
    store.save(path)
    click.echo(f"Exported new credentials file at: {styled_path(path)}")


@main.command()
@path_option
@name_argument
@plaintext_option
@click.pass_obj
def rotate(kms: KMS, path: pathlib.Path, name: str, stream: typing.TextIO):
    """
    Replace the value of a credential.

    The new plaintext is read from stdin unless --input is given.
    A credential that can no longer be decrypted can still be rotated.
    """
    store = load(path)
    store.find(name)

    plaintext = read_plaintext(stream)

    click.echo(f"KMS: Decrypting current plaintext for {name}")
    try:
        current = store.decrypt(kms, name)
    except CredentialDecryptError as error:
        log.warning(error.message)
        click.secho(
            f"Current plaintext for {name} could not be decrypted, replacing it",
            fg='yellow')
    else:
        if current == plaintext:
            raise KmsCredsException("No changes were made to the credential")

    click.echo(f"KMS: Encrypting new plaintext for {name}")
    store.rotate(kms, name, plaintext)
    store.save(path)
    click.echo(f"Exported new credentials file at: {styled_path(path)}")


@main.command(name='edit-description')
@path_option
@name_argument
@click.argument('description', type=click.STRING)
def edit_description(path: pathlib.Path, name: str, description: str):
    """Change the description of a credential."""
    store = load(path)
    store.set_description(name, description)
    store.save(path)
    click.echo(f"Updated the description of {name}")


@main.command()
@path_option
@name_argument
@click.confirmation_option(prompt="Delete this credential?")
def delete(path: pathlib.Path, name: str):
    """Remove a credential from a credentials file."""
    store = load(path)
    store.remove(name)
    store.save(path)
    click.echo(f"Deleted {name} from {styled_path(path)}")


@main.command(name='list')
@path_option
def list_(path: pathlib.Path):
    """List all credentials with their description."""
    store = load(path)

    if not store.credentials:
        click.echo(f"No credentials in {styled_path(path)}")
        return

    for credential in store:
        dates = f"added {format_timestamp(credential.added_at)}"
        if credential.rotated_at:
            dates += f", rotated {format_timestamp(credential.rotated_at)}"
        description = f" {credential.description}" if credential.description else ''
        click.echo(f"{styled_name(credential)}:{description} ({dates})")


@main.command()
@path_option
@click.option(
    '-f', '--format', 'format_name',
    type=click.Choice(sorted(FORMATTERS)),
    default='bash',
    show_default=True,
    help="Output format.")
@click.pass_obj
def export(kms: KMS, path: pathlib.Path, format_name: str):
    """Print the plaintext of every credential."""
    store = load(path)
    items = store.export_plaintext(kms)
    click.echo(formatter(format_name).format(items), nl=False)
