import dataclasses
from typing import Optional

from pyvips import Error, Image, Interesting  # type: ignore

from imgedge.params import TransformParams

# libvips refuses coordinates above this; used as "unbounded" for one-sided resizes.
VIPS_MAX_COORD = 10000000

WRITABLE_FORMATS = frozenset(['jpeg', 'png', 'webp', 'avif', 'gif', 'tiff'])
QUALITY_FORMATS = frozenset(['jpeg', 'webp', 'avif', 'heif'])

LOADER_FORMATS = {
    'jpegload': 'jpeg',
    'pngload': 'png',
    'webpload': 'webp',
    'gifload': 'gif',
    'tiffload': 'tiff',
    'svgload': 'svg',
    'heifload': 'heif',
}


class TransformError(Exception):
  pass


@dataclasses.dataclass(frozen=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))


@dataclasses.dataclass(frozen=True)
class TransformResult:
  body: bytes
  format: str
  size: Size

  @property
  def content_type(self) -> str:
    return content_type(self.format)


def content_type(format: str) -> str:
  if format == 'svg':
    format = 'svg+xml'

  return f'image/{format}'


def load(data: bytes) -> Image:
  try:
    return Image.new_from_buffer(data, '')
  except Error as e:
    raise TransformError(f'cannot load image: {e}')


def probe_format(data: bytes) -> str:
  image = load(data)
  loader: str = image.get('vips-loader')
  if loader.endswith('_buffer'):
    loader = loader[:-len('_buffer')]

  format = LOADER_FORMATS.get(loader)
  if format is None:
    raise TransformError(f'unsupported source: {loader}')

  if format == 'heif' and image.get_typeof('heif-compression') != 0:
    if image.get('heif-compression') == 'av1':
      return 'avif'

  return format


def resize(data: bytes, width: Optional[int], height: Optional[int]) -> Image:
  match (width, height):
    case (None, None):
      return load(data)
    case (int(), None):
      return Image.thumbnail_buffer(data, width, height=VIPS_MAX_COORD, size='both')
    case (None, int()):
      return Image.thumbnail_buffer(data, VIPS_MAX_COORD, height=height, size='both')
    case (int(), int()):
      return Image.thumbnail_buffer(
          data, width, height=height, size='both', crop=Interesting.CENTRE)
    case _:
      raise Exception('system error')


def transform(data: bytes, params: TransformParams, source_format: str) -> TransformResult:
  format = source_format if params.format is None else params.format
  if format not in WRITABLE_FORMATS:
    raise TransformError(f'unsupported output format: {format}')

  options = {}
  if format in QUALITY_FORMATS:
    options['Q'] = params.quality

  try:
    image = resize(data, params.width, params.height)
    body: bytes = image.write_to_buffer(f'.{format}', **options)
  except Error as e:
    raise TransformError(f'failed to transform: {e}')

  return TransformResult(body=body, format=format, size=Size.from_image(image))
