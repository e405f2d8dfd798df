from flask import Flask, request, jsonify
from requests.exceptions import RequestException

from curl_parser import parse_curl

app = Flask(__name__)
app.config.update(HOST="0.0.0.0", PORT=7700, DEBUG=False)
app.config.from_prefixed_env("CURL_APP")


def _read_curl():
    payload = request.get_json(force=True, silent=True) or {}
    curl_cmd = payload.get("curl")
    if not isinstance(curl_cmd, str) or not curl_cmd:
        raise ValueError("Field 'curl' must be a non-empty string")
    return curl_cmd


@app.post("/parse")
def parse():
    try:
        req = parse_curl(_read_curl())
    except ValueError as e:
        app.logger.warning("rejected curl command: %s", e)
        return jsonify({"error": str(e)}), 400
    return jsonify(req.to_dict()), 200


@app.post("/prepare")
def prepare():
    """What requests would put on the wire for the command. Nothing is sent."""
    try:
        req = parse_curl(_read_curl())
        prepared = req.to_requests().prepare()
        send = req.send_kwargs()
    except (ValueError, RequestException) as e:
        # MissingSchema / InvalidURL when the command had no usable URL
        app.logger.warning("cannot prepare curl command: %s", e)
        return jsonify({"error": str(e)}), 400

    body = prepared.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    return jsonify({
        "request": {
            "method": prepared.method,
            "url": prepared.url,
            "headers": dict(prepared.headers),
            "body": body,
        },
        "send": send,
    }), 200


if __name__ == "__main__":
    app.run(host=app.config["HOST"], port=app.config["PORT"], debug=app.config["DEBUG"])
