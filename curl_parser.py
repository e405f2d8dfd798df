import base64
import enum
import json
import logging
import math
import re
import shlex
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from requests import Request as HTTPRequest

logger = logging.getLogger(__name__)

KEY_CONTENT_TYPE = "content-type"
KEY_USER_AGENT = "user-agent"
KEY_COOKIE = "cookie"
KEY_AUTHORIZATION = "authorization"

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"

_URL_RE = re.compile(r"^https?://")


class CurlParserError(Exception):
    pass


class InvalidCommandError(CurlParserError, ValueError):
    pass


class InvalidJSONBodyError(CurlParserError, ValueError):
    pass


class Expect(enum.Enum):
    USER_AGENT = "user-agent"
    HEADER = "header"
    DATA = "data"
    USER = "user"
    METHOD = "method"
    COOKIE = "cookie"
    TIMEOUT = "timeout"


FLAGS = {
    "-A": Expect.USER_AGENT, "--user-agent": Expect.USER_AGENT,
    "-H": Expect.HEADER, "--header": Expect.HEADER,
    "-d": Expect.DATA, "--data": Expect.DATA,
    "--data-ascii": Expect.DATA, "--data-raw": Expect.DATA,
    "-u": Expect.USER, "--user": Expect.USER,
    "-X": Expect.METHOD, "--request": Expect.METHOD,
    "-b": Expect.COOKIE, "--cookie": Expect.COOKIE,
    "-m": Expect.TIMEOUT, "--max-time": Expect.TIMEOUT,
}

HEAD_FLAGS = ("-I", "--head")
INSECURE_FLAGS = ("-k", "--insecure")


@dataclass(frozen=True)
class Request:
    """Request described by a curl command. Never sent anywhere by this module."""

    method: str = "GET"
    url: str = ""
    header: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    skip_tls: bool = False
    timeout: str = ""

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "url": self.url,
            "header": dict(self.header),
            "body": self.body,
            "skip_tls": self.skip_tls,
            "timeout": self.timeout,
        }

    def to_requests(self) -> HTTPRequest:
        """Build an unsent ``requests.Request``; call ``.prepare()`` on it to get the wire form."""
        return HTTPRequest(
            method=self.method,
            url=self.url,
            headers=dict(self.header),
            data=self.body or None,
        )

    def send_kwargs(self) -> dict:
        # timeout is kept as text on the descriptor, requests wants seconds
        return {
            "verify": not self.skip_tls,
            "timeout": float(self.timeout) if self.timeout else None,
        }


def split_words(command: str) -> List[str]:
    return shlex.split(command, posix=True)


def sanitize(words: List[str]) -> List[str]:
    """
    Clean up words coming from the shell splitter:
      - a bare newline (left over from ``\\`` line continuations) is dropped
      - surrounding whitespace and embedded newlines are removed
      - ``-XPUT`` is split into ``-X`` and ``PUT``
    """
    res = []
    for word in words:
        if word == "\n":
            continue
        word = word.strip().replace("\n", "")
        if word.startswith("-X") and len(word) > 2:
            res.append(word[:2])
            res.append(word[2:])
            continue
        res.append(word)
    return res


def is_url(token: str) -> bool:
    return bool(_URL_RE.match(token))


def step(state: Optional[Expect], token: str, req: Request) -> Tuple[Optional[Expect], dict]:
    """
    Consume one token. Returns the next state and the fields of ``req`` to replace.
    ``req`` itself is never touched.
    """
    if is_url(token):
        # first URL wins; later URL-shaped tokens are not used as the URL and leave the state alone
        return state, {} if req.url else {"url": token}
    if token in HEAD_FLAGS:
        return state, {"method": "HEAD"}
    if token in INSECURE_FLAGS:
        return state, {"skip_tls": True}
    if token in FLAGS:
        # a flag still waiting for its value is abandoned
        return FLAGS[token], {}
    if state is None or not token:
        return state, {}

    if state is Expect.HEADER:
        key, _, val = token.partition(":")
        return None, {"header": {**req.header, key.strip().lower(): val.strip()}}
    if state is Expect.USER_AGENT:
        return None, {"header": {**req.header, KEY_USER_AGENT: token}}
    if state is Expect.DATA:
        patch = {"body": req.body + "&" + token if req.body else token}
        if req.method in ("GET", "HEAD"):
            patch["method"] = "POST"
        if KEY_CONTENT_TYPE not in req.header:
            patch["header"] = {**req.header, KEY_CONTENT_TYPE: CONTENT_TYPE_FORM}
        return None, patch
    if state is Expect.USER:
        auth = "Basic " + base64.b64encode(token.encode()).decode("ascii")
        return None, {"header": {**req.header, KEY_AUTHORIZATION: auth}}
    if state is Expect.METHOD:
        return None, {"method": token}
    if state is Expect.COOKIE:
        return None, {"header": {**req.header, KEY_COOKIE: token}}
    return None, {"timeout": token}


def _reject_constant(name):
    raise InvalidJSONBodyError(f"body is not valid JSON: {name} is not a JSON value")


def _parse_number(text):
    # all JSON numbers are one kind: 1.0 and 1e2 come out as 1 and 100
    num = float(text)
    if not math.isfinite(num):
        raise InvalidJSONBodyError(f"body is not valid JSON: number {text} out of range")
    return int(num) if num.is_integer() else num


def canonicalize_json(text: str) -> str:
    """Compact, key-sorted re-encoding of a JSON object; ``&<>`` and non-ASCII stay literal."""
    try:
        data = json.loads(text, parse_float=_parse_number, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise InvalidJSONBodyError(f"body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidJSONBodyError(f"JSON body must be an object, got {type(data).__name__}")
    return json.dumps(data, separators=(",", ":"), sort_keys=True, ensure_ascii=False, allow_nan=False)


def parse_curl(curl_cmd: str) -> Request:
    """
    Parse a curl command into a ``Request`` without running a shell or touching the network.
    Supported:
      -A / --user-agent UA
      -H / --header "Name: value"
      -d / --data / --data-ascii / --data-raw DATA  (repeatable, joined with '&')
      -u / --user user:pass  (Basic)
      -I / --head
      -X / --request METHOD  (also glued, -XPUT)
      -b / --cookie COOKIE
      -k / --insecure
      -m / --max-time SEC
      the first http:// or https:// word is the URL
    Everything else is ignored.
    """
    if not curl_cmd.startswith("curl "):
        raise InvalidCommandError(f"{curl_cmd!r}: not a valid cURL command")

    tokens = sanitize(split_words(curl_cmd))
    logger.debug("curl command split into %d tokens", len(tokens))

    req = Request()
    state = None
    for token in tokens:
        state, patch = step(state, token, req)
        if patch:
            req = replace(req, **patch)
    if state is not None:
        logger.debug("no value given for pending %s flag", state.value)

    if req.header.get(KEY_CONTENT_TYPE) == CONTENT_TYPE_JSON:
        req = replace(req, body=canonicalize_json(req.body))
    return req
