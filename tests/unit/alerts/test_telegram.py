import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from tierwatch.alerts import AlertConfig, TelegramAlerts
from tierwatch.models import AlertRecord
from tests.conftest import wait_for


def make_sink(**kwargs):
    config = AlertConfig(bot_token="token", chat_id="chat", min_message_interval=0, **kwargs)
    return TelegramAlerts(config)


def ok_response(message_id=7):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"ok": True, "result": {"message_id": message_id}}
    return response


def record(severity="minor", message="<b>hello</b>"):
    return AlertRecord(category="price", alert_type=f"{severity}_change", severity=severity, message=message, id=1)


def test_requires_credentials_unless_dry_run():
    with pytest.raises(ValueError):
        TelegramAlerts(AlertConfig(bot_token="", chat_id="chat"))
    TelegramAlerts(AlertConfig(bot_token="", chat_id="", dry_run=True))


def test_from_env(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    assert TelegramAlerts.from_env() is None
    assert TelegramAlerts.from_env(dry_run=True).config.dry_run is True

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "c")
    assert TelegramAlerts.from_env().config.chat_id == "c"


def test_dry_run_never_posts():
    sink = TelegramAlerts(AlertConfig(bot_token="", chat_id="", dry_run=True))
    with patch("tierwatch.alerts.telegram.requests.post") as post:
        assert sink._send_message("hi") is not None
    post.assert_not_called()


def test_send_posts_html():
    sink = make_sink()
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()) as post:
        assert sink._send_message("<b>hi</b>") == 7

    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url.endswith("/bottoken/sendMessage")
    assert payload["parse_mode"] == "HTML"
    assert payload["chat_id"] == "chat"


def test_long_messages_truncated():
    sink = make_sink()
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()) as post:
        sink._send_message("x" * 5000)
    assert len(post.call_args.kwargs["json"]["text"]) <= 4000


def test_rate_limit_drops_routine_but_not_urgent():
    sink = make_sink(max_alerts_per_minute=2)
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()) as post:
        assert sink._send_message("1") == 7
        assert sink._send_message("2") == 7
        assert sink._send_message("3") is None
        assert sink._send_message("4", skip_rate_limit=True) == 7
    assert post.call_count == 3


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout(),
    requests.exceptions.ConnectionError(),
    requests.exceptions.RequestException(),
])
def test_http_failures_return_none(error):
    sink = make_sink()
    with patch("tierwatch.alerts.telegram.requests.post", side_effect=error):
        assert sink._send_message("hi") is None


def test_http_error_status_returns_none():
    sink = make_sink()
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=MagicMock(status_code=429))
    with patch("tierwatch.alerts.telegram.requests.post", return_value=response):
        assert sink._send_message("hi") is None


def test_deliver_without_loop_calls_back_inline():
    delivered = []
    done = threading.Event()

    def on_delivered(rec):
        delivered.append(rec)
        done.set()

    sink = make_sink()
    sink.on_delivered = on_delivered
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()):
        sink.deliver(record())
        assert done.wait(2)

    assert delivered[0].id == 1


@pytest.mark.asyncio
async def test_deliver_hops_callback_onto_loop():
    loop_thread = threading.get_ident()
    seen = []

    def on_delivered(rec):
        seen.append((rec.id, threading.get_ident()))

    sink = make_sink()
    sink.on_delivered = on_delivered
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()):
        sink.deliver(record(severity="critical"))
        await wait_for(lambda: seen)

    assert seen == [(1, loop_thread)]


@pytest.mark.asyncio
async def test_failed_delivery_skips_callback():
    seen = []
    sink = make_sink()
    sink.on_delivered = seen.append
    with patch("tierwatch.alerts.telegram.requests.post", side_effect=requests.exceptions.Timeout()) as post:
        sink.deliver(record())
        await wait_for(lambda: post.called)
        await asyncio.sleep(0.05)

    assert seen == []


def test_service_status_and_test_alert():
    sink = make_sink()
    with patch("tierwatch.alerts.telegram.requests.post", return_value=ok_response()) as post:
        assert sink.send_service_status("started", "Tokens watched: 2") is True
        assert sink.send_test_alert() is True

    first = post.call_args_list[0].kwargs["json"]["text"]
    assert "Watcher service started" in first
    assert "Tokens watched: 2" in first


@pytest.mark.asyncio
async def test_dry_run_delivery_is_not_confirmed():
    seen = []
    sink = TelegramAlerts(AlertConfig(bot_token="", chat_id="", dry_run=True))
    sink.on_delivered = seen.append

    with patch.object(sink, "_send_message", wraps=sink._send_message) as send:
        sink.deliver(record())
        await wait_for(lambda: send.called)
        await asyncio.sleep(0.05)

    assert seen == []
