from urllib import parse

from imgedge.log import init_logging
from imgedge.params import append_segment
from imgedge.typing import HttpPath, Request, ViewerRequestEvent

log = init_logging(__name__)


def get_query(req: Request) -> dict[str, str]:
  qs = req['querystring']
  if isinstance(qs, str):
    return {k: v[0] for k, v in parse.parse_qs(qs, keep_blank_values=True).items()}

  return {k: v['value'] for k, v in qs.items()}


def rewrite(req: Request) -> Request:
  if req['method'] != 'GET':
    return req

  req['uri'] = HttpPath(append_segment(req['uri'], get_query(req)))
  return req


def lambda_main(event: ViewerRequestEvent) -> Request:
  req = event['Records'][0]['cf']['request']
  uri = req['uri']

  req = rewrite(req)

  log.debug({
      'message': 'cache key',
      'method': req['method'],
      'path': uri,
      'uri': req['uri'],
  })

  return req
