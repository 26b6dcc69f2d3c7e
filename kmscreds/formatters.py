"""
Each Formatter renders decrypted credentials as text.
"""

import json
import logging
import typing

from .store import PlaintextItem
from .utils import NAME_PATTERN, FormatterNotFound, KmsCredsException

log = logging.getLogger(__name__)

Items = typing.Sequence[PlaintextItem]


class Formatter:
    def format(self, items: Items) -> str:
        raise NotImplementedError

    @staticmethod
    def key(name: str) -> str:
        """Names become shell variables, so only safe names are rendered."""
        if not NAME_PATTERN.fullmatch(name):
            raise KmsCredsException(f"Unable to export credential name {name!r}")
        return name.upper()


class BashFormatter(Formatter):
    """
    Export statements that can be sourced by a shell.

    Values are single quoted, so the only character that needs escaping is
    the single quote itself.
    """

    def format(self, items: Items) -> str:
        return ''.join(
            f"export {self.key(item.name)}={self.quote(item.plaintext)}\n"
            for item in items)

    @staticmethod
    def quote(value: str) -> str:
        return "'" + value.replace("'", "'\"'\"'") + "'"


class DotenvFormatter(Formatter):
    """Double quoted KEY="value" lines, as read by most dotenv libraries."""

    ESCAPES = (('\\', '\\\\'), ('"', '\\"'), ('$', '\\$'), ('\n', '\\n'))

    def format(self, items: Items) -> str:
        return ''.join(
            f"{self.key(item.name)}={self.quote(item.plaintext)}\n"
            for item in items)

    @classmethod
    def quote(cls, value: str) -> str:
        for old, new in cls.ESCAPES:
            value = value.replace(old, new)
        return f'"{value}"'


class JSONFormatter(Formatter):
    def format(self, items: Items) -> str:
        return json.dumps(
            {item.name: item.plaintext for item in items}, indent=2) + '\n'


FORMATTERS: typing.Dict[str, typing.Type[Formatter]] = {
    'bash': BashFormatter,
    'dotenv': DotenvFormatter,
    'json': JSONFormatter,
}


def formatter(name: str) -> Formatter:
    try:
        cls = FORMATTERS[name]
    except KeyError:
        raise FormatterNotFound(
            f"Unknown format {name!r}, expected one of: "
            f"{', '.join(sorted(FORMATTERS))}") from None
    log.debug(f"Using {cls.__name__}")
    return cls()
