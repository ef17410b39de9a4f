#!/usr/bin/env python3
"""
Dev helper: send a signed fake WeChat request to a running bridge.

Builds the query signature exactly like the WeChat server does, so the
bridge can be exercised locally without a real Official Account.

Usage
-----
# Server verification handshake (GET /wechat)
python scripts/send_wechat_message.py --verify

# Text message from a fake user, targeting localhost:3000
python scripts/send_wechat_message.py "hello"

# Bind the fake user to a local runtime webhook
python scripts/send_wechat_message.py "bind http://localhost:8765/webhook wh_abc123"

# New-follower event
python scripts/send_wechat_message.py --subscribe

# Different user / bridge URL
python scripts/send_wechat_message.py --openid oUser2 --url http://staging.example.com "hi"

Environment / .env
------------------
WECHAT_TOKEN   Server verification token (required unless --token is given).
"""

import argparse
import os
import sys
import textwrap
import time
import uuid
from pathlib import Path

import httpx
from dotenv import load_dotenv

from wxrelay.services.message_translator import build_text_reply
from wxrelay.services.signature import generate_signature


# ---------------------------------------------------------------------------
# Request builders
# ---------------------------------------------------------------------------

def _signed_params(token: str) -> dict:
    timestamp = str(int(time.time()))
    nonce = uuid.uuid4().hex[:10]
    return {
        "signature": generate_signature(token, timestamp, nonce),
        "timestamp": timestamp,
        "nonce": nonce,
    }


def _build_subscribe_xml(openid: str, account: str) -> str:
    return (
        "<xml>"
        f"<ToUserName><![CDATA[{account}]]></ToUserName>"
        f"<FromUserName><![CDATA[{openid}]]></FromUserName>"
        f"<CreateTime>{int(time.time())}</CreateTime>"
        "<MsgType><![CDATA[event]]></MsgType>"
        "<Event><![CDATA[subscribe]]></Event>"
        "</xml>"
    )


def _build_text_xml(openid: str, account: str, content: str) -> str:
    # A text message has the same shape as a passive text reply, plus MsgId
    xml = build_text_reply(account, openid, content)
    return xml.replace("</xml>", f"<MsgId>{int(time.time() * 1000)}</MsgId></xml>")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_wechat_message.py",
        description=textwrap.dedent("""\
            Send a signed fake WeChat request to the bridge.

            Reads WECHAT_TOKEN from the environment or a .env file in the
            project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("content", nargs="?", default="hello", help='Text to send (default: "hello")')
    parser.add_argument(
        "--url",
        default="http://localhost:3000",
        help="Bridge base URL (default: http://localhost:3000)",
    )
    parser.add_argument("--openid", default="oTestUser0001", help="Sender OpenID")
    parser.add_argument("--account", default="gh_test_account", help="Official Account id (ToUserName)")
    parser.add_argument("--token", default=None, help="Override WECHAT_TOKEN")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--verify", action="store_true", help="Send the GET verification handshake")
    group.add_argument("--subscribe", action="store_true", help="Send a subscribe event")
    parser.add_argument("--dry-run", action="store_true", help="Print the request without sending it")

    args = parser.parse_args()

    token = args.token or os.getenv("WECHAT_TOKEN", "")
    if not token:
        print(
            "ERROR: No WeChat token found.\n"
            "Set WECHAT_TOKEN in your environment or .env file, or pass --token.",
            file=sys.stderr,
        )
        return 1

    endpoint = f"{args.url.rstrip('/')}/wechat"
    params = _signed_params(token)

    if args.verify:
        params["echostr"] = uuid.uuid4().hex
        body = None
    elif args.subscribe:
        body = _build_subscribe_xml(args.openid, args.account)
    else:
        body = _build_text_xml(args.openid, args.account, args.content)

    print(f"Endpoint : {endpoint}")
    print(f"Params   : {params}")
    if body:
        print(f"Body     : {body}")

    if args.dry_run:
        return 0

    try:
        if body is None:
            response = httpx.get(endpoint, params=params, timeout=10)
        else:
            response = httpx.post(
                endpoint,
                params=params,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/xml"},
                timeout=10,
            )
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the bridge running? Start it with:\n"
            "  wxrelay-bridge   (or: uvicorn wxrelay.main:app --app-dir backend --reload)",
            file=sys.stderr,
        )
        return 1

    symbol = "OK" if response.status_code == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {response.status_code}")
    print(response.text)
    if args.verify and response.status_code == 200 and response.text != params["echostr"]:
        print("WARNING: echostr was not echoed back verbatim", file=sys.stderr)
        return 1
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
