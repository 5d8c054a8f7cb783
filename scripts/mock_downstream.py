#!/usr/bin/env python3
"""Local stand-in for the downstream postback processing function.

Point the relay at it with ``AFF_DOWNSTREAM_URL=http://127.0.0.1:54321/functions/v1/postback``.
"""
from __future__ import annotations

import argparse
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qsl, urlparse

FUNCTION_PATH = "/functions/v1/postback"


def _conversion_payload(params: dict[str, str]) -> tuple[HTTPStatus, dict[str, object]]:
    click_id = params.get("click_id")
    if not click_id:
        return HTTPStatus.BAD_REQUEST, {"error": "Missing required field: click_id"}
    if click_id.startswith("unknown"):
        return HTTPStatus.NOT_FOUND, {"error": "Click not found"}

    goal = params.get("goal") or params.get("type") or "conversion"
    return HTTPStatus.OK, {
        "success": True,
        "message": f"Conversion recorded for click_id {click_id}",
        "goal": goal,
        "payout": params.get("payout"),
        "all_parameters": params,
    }


class MockDownstreamHandler(BaseHTTPRequestHandler):
    server_version = "MockDownstream/1.0"

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        parsed = urlparse(self.path)
        if parsed.path == "/healthz":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return

        if parsed.path != FUNCTION_PATH:
            self._write_json(HTTPStatus.NOT_FOUND, {"error": "not found"})
            return

        params = dict(parse_qsl(parsed.query, keep_blank_values=True))
        if not params:
            self._write_json(HTTPStatus.OK, {"success": True, "status": "healthy"})
            return

        status, payload = _conversion_payload(params)
        self._write_json(status, payload)

    def log_message(self, _: str, *args: object) -> None:
        if args:
            print("mock-downstream:", *args)

    def _write_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock downstream postback processing endpoint.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), MockDownstreamHandler)
    print(f"mock-downstream listening on http://{args.host}:{args.port}{FUNCTION_PATH}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
