from typing import Literal, NewType, NotRequired, TypedDict

HttpPath = NewType('HttpPath', str)
S3Key = NewType('S3Key', str)


class Header(TypedDict):
  key: NotRequired[str]
  value: str


class QueryValue(TypedDict):
  value: str


class S3Origin(TypedDict):
  customHeaders: dict[str, list[Header]]
  domainName: str
  path: str
  readTimeout: int
  responseCompletionTimeout: int
  authMethod: Literal['origin-access-identity', 'none']
  region: NotRequired[str]


class Origin(TypedDict):
  s3: NotRequired[S3Origin]


class Request(TypedDict):
  method: Literal['GET', 'HEAD', 'OPTIONS', 'TRACE', 'PUT', 'DELETE', 'POST', 'PATCH', 'CONNECT']
  uri: HttpPath
  # Lambda@Edge passes the raw query string; CloudFront Functions pass a map.
  querystring: str | dict[str, QueryValue]
  headers: dict[str, list[Header]]
  clientIp: str
  origin: NotRequired[Origin]


class ViewerRequestConfig(TypedDict):
  distributionDomainName: str
  distributionId: str
  eventType: Literal['viewer-request']
  requestId: str


class ViewerRequestRecord(TypedDict):
  config: ViewerRequestConfig
  request: Request


class ViewerRequestRecordContainer(TypedDict):
  cf: ViewerRequestRecord


class ViewerRequestEvent(TypedDict):
  Records: list[ViewerRequestRecordContainer]


class OriginResponseConfig(TypedDict):
  distributionDomainName: str
  distributionId: str
  eventType: Literal['origin-response']
  requestId: str


class Response(TypedDict):
  headers: dict[str, list[Header]]
  status: str
  statusDescription: str
  body: NotRequired[str]
  bodyEncoding: NotRequired[Literal['text', 'base64']]


class OriginResponseRecord(TypedDict):
  config: OriginResponseConfig
  request: Request
  response: Response


class OriginResponseRecordContainer(TypedDict):
  cf: OriginResponseRecord


class OriginResponseEvent(TypedDict):
  Records: list[OriginResponseRecordContainer]
