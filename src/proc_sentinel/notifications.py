"""Alert delivery for proc-sentinel: webhook and structured log sinks."""

from typing import Callable

import requests
import structlog

from proc_sentinel import logging as console
from proc_sentinel.alerts import AlertEvent, AlertSink
from proc_sentinel.config import Config

log = structlog.get_logger()


def send_webhook(
    session: requests.Session,
    url: str,
    message: str,
    timeout: float = 5.0,
) -> bool:
    """POST a chat-style message ({"content": ...}) to a webhook.

    Args:
        session: HTTP session to reuse connections
        url: Webhook URL
        message: Message body
        timeout: Seconds before giving up

    Returns:
        True if the webhook accepted the message
    """
    try:
        response = session.post(url, json={"content": message}, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        log.warning("webhook_failed", url=url, error=str(e))
        return False
    log.debug("webhook_sent", url=url, status=response.status_code)
    return True


class WebhookSink:
    """Delivers alerts to the active webhook of the current config."""

    def __init__(
        self,
        config_source: Callable[[], Config],
        session: requests.Session | None = None,
    ):
        self.config_source = config_source
        self.session = session or requests.Session()
        self.sent = 0
        self.failed = 0

    def deliver(self, event: AlertEvent) -> None:
        config = self.config_source()
        url = config.active_webhook_url
        if not url:
            log.debug("webhook_skipped", reason="no active webhook", pid=event.pid)
            return
        try:
            ok = send_webhook(
                self.session, url, event.message, timeout=config.system.webhook_timeout
            )
        except Exception as e:
            # A broken delivery must not stop evaluation of the remaining records
            log.error("webhook_error", url=url, error=str(e))
            ok = False
        if ok:
            self.sent += 1
        else:
            self.failed += 1

    def close(self) -> None:
        self.session.close()


class LogSink:
    """Writes alerts to the structured log and the console."""

    def deliver(self, event: AlertEvent) -> None:
        log.warning(
            "alert",
            pid=event.pid,
            kind=event.kind.value,
            value=round(event.value, 1),
            threshold=event.threshold,
            command=event.command,
        )
        console.alert_sent(event.message)


class FanOutSink:
    """Delivers each alert to several sinks in order."""

    def __init__(self, *sinks: AlertSink):
        self.sinks = sinks

    def deliver(self, event: AlertEvent) -> None:
        for sink in self.sinks:
            sink.deliver(event)
