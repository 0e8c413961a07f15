from typing import Any

import pytest

from index import origin_response_lambda_handler, viewer_request_lambda_handler


def create_request(method: str, uri: str) -> dict[str, Any]:
  return {
      'method': method,
      'uri': uri,
      'querystring': 'format=webp&w=200',
      'headers': {},
      'clientIp': '203.0.113.1',
  }


def create_event(event_type: str, cf: dict[str, Any]) -> Any:
  return {
      'Records': [{
          'cf': {
              'config': {
                  'distributionDomainName': 'd111111abcdef8.cloudfront.net',
                  'distributionId': 'EDFDVBD6EXAMPLE',
                  'eventType': event_type,
                  'requestId': 'EXAMPLE',
              },
              **cf,
          },
      }],
  }


def test_viewer_request_lambda_handler() -> None:
  event = create_event('viewer-request', {'request': create_request('GET', '/a/photo.png')})

  req = viewer_request_lambda_handler(event, None)  # type: ignore

  assert req['uri'] == '/a/photo.png/quality(100)w(200)h()format(webp)'


@pytest.mark.parametrize('status', ['200', '404'])
def test_origin_response_lambda_handler(monkeypatch: pytest.MonkeyPatch, status: str) -> None:
  monkeypatch.setenv('AWS_REGION', 'us-west-2')
  event = create_event(
      'origin-response', {
          'request': create_request('GET', '/a/photo.png/quality(100)w(200)h()format(webp)'),
          'response': {
              'status': status,
              'statusDescription': 'whatever',
              'headers': {},
          },
      })

  # No origin configuration is attached, so a miss falls open as well.
  res = origin_response_lambda_handler(event, None)  # type: ignore

  assert res == {
      'status': status,
      'statusDescription': 'whatever',
      'headers': {
          'x-lae-region': [{
              'key': 'x-lae-region',
              'value': 'us-west-2'
          }],
      },
  }
