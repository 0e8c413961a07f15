from aws_lambda_powertools.utilities.typing import LambdaContext

from imgedge.cachekey import index as cachekey
from imgedge.originresponse import index as originresponse
from imgedge.typing import (
    OriginResponseEvent,
    Request,
    Response,
    ViewerRequestEvent
)


def viewer_request_lambda_handler(
    event: ViewerRequestEvent,
    _: LambdaContext,
) -> Request:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = cachekey.lambda_main(event)

  # # For debugging
  # print('return:')
  # print(json.dumps(ret))

  return ret


def origin_response_lambda_handler(
    event: OriginResponseEvent,
    _: LambdaContext,
) -> Response:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  cf = event['Records'][0]['cf']
  ret = originresponse.lambda_main(cf['request'], cf['response'])

  # # For debugging
  # print('return:')
  # print(json.dumps(ret))

  return ret
