import base64
import dataclasses
import datetime
import os
import time
from email.utils import format_datetime
from enum import Enum
from http import HTTPStatus
from logging import Logger
from typing import Any, Optional, Tuple
from urllib import parse

import boto3
from botocore.exceptions import ClientError
from dateutil import tz
from mypy_boto3_s3.client import S3Client

from imgedge.log import init_logging
from imgedge.params import (
    TransformParams,
    decode_query,
    decode_segment,
    encode_segment,
    get_extension
)
from imgedge.transform import probe_format, transform
from imgedge.typing import Header, HttpPath, Request, Response, S3Key

REGION_HEADER = 'x-lae-region'

DEFAULT_CACHE_KEY_PREFIX = '_cf/'
DEFAULT_MAX_AGE = 365 * 24 * 60 * 60

NOT_FOUND_STATUSES = ['404', '403']

logger = init_logging(__name__)


def get_now() -> datetime.datetime:
  # Return timezone-aware datetime
  return datetime.datetime.now(tz=tz.tzutc())


def http_date(dt: datetime.datetime) -> str:
  return format_datetime(dt.astimezone(datetime.timezone.utc), usegmt=True)


class InvalidKey(Exception):
  pass


class ParamSource(Enum):
  PATH = 0
  QUERY = 1


@dataclasses.dataclass(eq=True, frozen=True)
class XParams:
  region: str
  bucket: str
  cache_key_prefix: str
  max_age: int
  param_source: ParamSource


@dataclasses.dataclass(frozen=True)
class CacheWrite:
  etag: Optional[str] = None
  reason: Optional[str] = None

  @property
  def succeeded(self) -> bool:
    return self.etag is not None


@dataclasses.dataclass(frozen=True)
class InstantResponse:
  status: int
  b64_body: str
  cache_control: str
  content_type: str
  etag: Optional[str]
  last_modified: Optional[str]
  vips_us: int
  img_size: int


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey']


def get_header(req: Request, name: str) -> str:
  return req['origin']['s3']['customHeaders'][name][0]['value']


def get_header_or(req: Request, name: str, default: str = '') -> str:
  try:
    return get_header(req, name)
  except KeyError:
    return default


def key_from_path(path: HttpPath) -> S3Key:
  return S3Key(parse.unquote(path[1:] if path.startswith('/') else path))


def split_segment(path: HttpPath) -> Tuple[HttpPath, str]:
  # Split before unquoting so an encoded slash never acts as a separator.
  head, _, segment = path.rpartition('/')
  return HttpPath(head), segment


def original_key_from_path(path: HttpPath, has_segment: bool) -> S3Key:
  if has_segment:
    path, _ = split_segment(path)

  key = key_from_path(path)
  if key.strip() == '':
    raise InvalidKey(f'invalid key: "{key}"')

  return key


def header(name: str, value: str) -> list[Header]:
  return [{'key': name, 'value': value}]


def build_response(res: Response, result: InstantResponse) -> Response:
  res['status'] = str(int(result.status))
  res['statusDescription'] = HTTPStatus(result.status).phrase
  res['body'] = result.b64_body
  res['bodyEncoding'] = 'base64'
  res['headers']['content-type'] = header('Content-Type', result.content_type)
  res['headers']['cache-control'] = header('Cache-Control', result.cache_control)

  if result.etag is not None:
    res['headers']['etag'] = header('ETag', result.etag)

  if result.last_modified is not None:
    res['headers']['last-modified'] = header('Last-Modified', result.last_modified)

  return res


class ImgTransformer:
  instances: dict[XParams, 'ImgTransformer'] = {}

  def __init__(
      self,
      log: Logger,
      region: str,
      s3: S3Client,
      bucket: str,
      cache_key_prefix: str,
      max_age: int,
      param_source: ParamSource,
  ):
    self.log = log
    self.region = region
    self.s3 = s3
    self.bucket = bucket
    self.cache_key_prefix = cache_key_prefix
    self.max_age = max_age
    self.param_source = param_source
    self.log_context = {'path': '', 'qstr': ''}
    self.cache_control = f'max-age={self.max_age}'

  @classmethod
  def from_lambda(
      cls,
      log: Logger,
      req: Request,
  ) -> Optional['ImgTransformer']:
    try:
      region = get_header(req, 'x-env-region')
      bucket = req['origin']['s3']['domainName'].split('.', 1)[0]
      cache_key_prefix = get_header_or(req, 'x-env-cache-key-prefix', DEFAULT_CACHE_KEY_PREFIX)
      max_age = int(get_header_or(req, 'x-env-max-age', str(DEFAULT_MAX_AGE)))
      param_source_name = get_header_or(req, 'x-env-param-source', 'path')
    except KeyError as e:
      log.warning({
          'message': 'environment variable not found',
          'key': str(e),
      })
      return None
    except ValueError as e:
      log.warning({
          'message': 'invalid environment variable',
          'key': 'x-env-max-age',
          'reason': str(e),
      })
      return None

    if param_source_name.upper() not in ParamSource.__members__:
      log.warning({
          'message': 'invalid environment variable',
          'key': 'x-env-param-source',
          'reason': f'unknown value: {param_source_name}',
      })
      return None

    param_source = ParamSource[param_source_name.upper()]

    server_key = XParams(
        region=region,
        bucket=bucket,
        cache_key_prefix=cache_key_prefix,
        max_age=max_age,
        param_source=param_source)

    if server_key not in cls.instances:
      s3 = boto3.client('s3', region_name=region)
      cls.instances[server_key] = cls(
          log=log,
          region=region,
          s3=s3,
          bucket=bucket,
          cache_key_prefix=cache_key_prefix,
          max_age=max_age,
          param_source=param_source)

    return cls.instances[server_key]

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.log_context,
        **dict,
    })

  def set_log_context(self, path: HttpPath, qstr: str) -> None:
    self.log_context = {'path': str(path), 'qstr': qstr}

  def cache_key(self, orig_key: S3Key, segment: str) -> S3Key:
    # The segment stays percent-encoded so that it remains a single key component.
    return S3Key(f'{self.cache_key_prefix}{orig_key}/{segment}')

  def resolve(self, path: HttpPath, qstr: str) -> Tuple[TransformParams, S3Key, S3Key]:
    match self.param_source:
      case ParamSource.PATH:
        _, segment = split_segment(path)
        params = decode_segment(parse.unquote(segment))
        orig_key = original_key_from_path(path, True)
      case ParamSource.QUERY:
        query = {k: v[0] for k, v in parse.parse_qs(qstr, keep_blank_values=True).items()}
        extension = get_extension(path)
        params = decode_query(query, extension)
        orig_key = original_key_from_path(path, False)
        segment = encode_segment(query, extension)
      case _:
        raise Exception('system error')

    params.validate()

    return params, orig_key, self.cache_key(orig_key, segment)

  def get_original(self, key: S3Key) -> Optional[bytes]:
    try:
      res = self.s3.get_object(Bucket=self.bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        self.log_warning('original not found', {'key': key})
        return None
      raise e

    return res['Body'].read()

  def put_generated(self, key: S3Key, body: bytes, content_type: str) -> CacheWrite:
    try:
      res = self.s3.put_object(
          Bucket=self.bucket,
          Key=key,
          Body=body,
          ContentType=content_type,
          CacheControl=self.cache_control)
    except Exception as e:
      self.log_warning('failed to write generated image', {'reason': str(e), 'key': key})
      return CacheWrite(reason=str(e))

    etag = res.get('ETag')
    if not etag:
      self.log_warning('no etag returned', {'key': key})
      return CacheWrite(reason='no etag returned')

    return CacheWrite(etag=etag)

  def process(self, path: HttpPath, qstr: str) -> Optional[InstantResponse]:
    try:
      params, orig_key, cache_key = self.resolve(path, qstr)

      data = self.get_original(orig_key)
      if data is None:
        return None

      source_format = probe_format(data)

      start_ns = time.time_ns()
      result = transform(data, params, source_format)
      vips_us = (time.time_ns() - start_ns) // 1000

      self.log_debug(
          'transformed', {
              'key': orig_key,
              'params': dataclasses.asdict(params),
              'source_format': source_format,
              'format': result.format,
              'size': dataclasses.asdict(result.size),
          })

      written = self.put_generated(cache_key, result.body, result.content_type)

      if written.succeeded:
        etag = written.etag
        last_modified = http_date(get_now())
      else:
        etag = None
        last_modified = None

      return InstantResponse(
          status=HTTPStatus.OK,
          b64_body=base64.b64encode(result.body).decode(),
          cache_control=self.cache_control,
          content_type=result.content_type,
          etag=etag,
          last_modified=last_modified,
          vips_us=vips_us,
          img_size=len(result.body))
    except Exception as e:
      self.log_error('error during process()', {'reason': str(e), 'type': type(e).__name__})
      return None


def lambda_main(req: Request, res: Response) -> Response:
  res['headers'][REGION_HEADER] = header(REGION_HEADER, os.environ.get('AWS_REGION', ''))

  if res['status'] not in NOT_FOUND_STATUSES:
    return res

  try:
    server = ImgTransformer.from_lambda(logger, req)
  except Exception as e:
    logger.error({'message': 'failed to initialize', 'reason': str(e)})
    return res

  if server is None:
    return res

  path = req['uri']
  qstr = req['querystring'] if isinstance(req['querystring'], str) else ''

  server.set_log_context(path, qstr)
  result = server.process(path, qstr)

  if result is None:
    server.log_debug('passed through', {'status': res['status']})
    return res

  server.log_debug(
      'responded', {
          'status': result.status,
          'cache_control': result.cache_control,
          'content_type': result.content_type,
          'etag': result.etag,
          'img_size': result.img_size,
          'vips_us': result.vips_us,
      })

  return build_response(res, result)
