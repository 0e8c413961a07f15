import dataclasses
import os
import re
from typing import Any, Iterator, Mapping, Optional, Tuple
from urllib import parse

QUALITY = 'quality'
WIDTH = 'w'
HEIGHT = 'h'
FORMAT = 'format'

DEFAULT_QUALITY = 100

# Order is part of the cache key and must never change.
OPTION_KEYS = [QUALITY, WIDTH, HEIGHT, FORMAT]

KNOWN_EXTENSIONS = {
    'jpeg': 'jpeg',
    'jpg': 'jpeg',
    'png': 'png',
    'gif': 'gif',
    'avif': 'avif',
    'webp': 'webp',
}

token_re = re.compile(r'([A-Za-z]+)\(([^()]*)\)')
digits_re = re.compile(r'\d+')
format_re = re.compile(r'[A-Za-z0-9]+')


class InvalidParams(Exception):
  pass


def normalize_extension(ext: Any) -> Optional[str]:
  if not isinstance(ext, str):
    return None

  return KNOWN_EXTENSIONS.get(ext.lower())


def get_extension(path: str) -> Optional[str]:
  _, ext = os.path.splitext(path)
  return normalize_extension(ext[1:])


@dataclasses.dataclass(eq=True, frozen=True)
class TransformParams:
  width: Optional[int] = None
  height: Optional[int] = None
  quality: int = DEFAULT_QUALITY
  format: Optional[str] = None

  def validate(self) -> None:
    if self.width is not None and self.width <= 0:
      raise InvalidParams(f'invalid width: {self.width}')

    if self.height is not None and self.height <= 0:
      raise InvalidParams(f'invalid height: {self.height}')

    if not 1 <= self.quality <= 100:
      raise InvalidParams(f'invalid quality: {self.quality}')


def default_value(key: str, extension: Optional[str]) -> str:
  if key == QUALITY:
    return str(DEFAULT_QUALITY)
  if key == FORMAT:
    return '' if extension is None else extension
  return ''


def effective_value(key: str, query: Mapping[str, str], extension: Optional[str]) -> str:
  value = query.get(key)
  if key == FORMAT:
    value = normalize_extension(value)

  if not value:
    return default_value(key, extension)

  # Values must stay inside one path component and one token.
  return parse.quote(value, safe='')


def encode_segment(query: Mapping[str, str], extension: Optional[str]) -> str:
  return ''.join(f'{key}({effective_value(key, query, extension)})' for key in OPTION_KEYS)


def append_segment(uri: str, query: Mapping[str, str]) -> str:
  return f'{uri}/{encode_segment(query, get_extension(uri))}'


def tokenize(segment: str) -> Iterator[Tuple[str, str]]:
  for m in token_re.finditer(segment):
    yield m.group(1), m.group(2)


def parse_int(value: Optional[str]) -> Optional[int]:
  if value is None or digits_re.fullmatch(value) is None:
    return None
  return int(value)


def parse_format(value: Optional[str]) -> Optional[str]:
  if value is None or format_re.fullmatch(value) is None:
    return None
  return normalize_extension(value)


def decode_segment(segment: str) -> TransformParams:
  tokens: dict[str, str] = {}
  for name, value in tokenize(segment):
    if name.lower() == FORMAT:
      name = FORMAT
    # First occurrence wins.
    tokens.setdefault(name, value)

  quality = parse_int(tokens.get(QUALITY))

  return TransformParams(
      width=parse_int(tokens.get(WIDTH)),
      height=parse_int(tokens.get(HEIGHT)),
      quality=DEFAULT_QUALITY if quality is None else quality,
      format=parse_format(tokens.get(FORMAT)))


def decode_query(query: Mapping[str, str], extension: Optional[str] = None) -> TransformParams:
  return decode_segment(encode_segment(query, extension))
