"""FCM-style HTTP push channel, the fallback sink for owners without a live subscriber."""

import logging

import httpx

from focuslock.resilience import CircuitBreaker, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

# Provider error codes meaning the token will never work again
INVALID_TOKEN_ERRORS = frozenset({"NotRegistered", "InvalidRegistration", "MismatchSenderId"})


class PushChannel:
    """Delivers notifications to a device token over HTTP.

    Results are dicts ({status, success, error?}) rather than exceptions so
    a failed push can never unwind the transition that triggered it.
    Transport errors are retried with backoff; repeated failures open the
    circuit breaker and further sends are skipped until it cools down.
    """

    name = "push"

    def __init__(
        self,
        endpoint: str,
        server_key: str = "",
        dry_run: bool = False,
        client: httpx.Client | None = None,
        breaker: CircuitBreaker | None = None,
        retry: RetryConfig | None = None,
        timeout: float = 5.0,
    ):
        self.endpoint = endpoint
        self.server_key = server_key
        self.dry_run = dry_run
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, cooldown_seconds=300)
        self.retry = retry or RetryConfig()
        self._client = client

    @property
    def configured(self) -> bool:
        return self.dry_run or bool(self.server_key)

    def send_sync(self, token: str, message: dict) -> dict:
        """Send one {title, body, data} message to *token*."""
        payload = self._format_payload(token, message)

        if self.dry_run:
            logger.info("DRY RUN: push payload for %s: %s", message["data"].get("type"), payload)
            return {"status": "dry_run", "success": True, "payload": payload}

        if not self.server_key:
            return {"status": "not_configured", "success": False, "error": "no server key"}

        if not self.breaker.can_execute():
            return {"status": "circuit_open", "success": False, "error": "circuit open"}

        try:
            response = retry_with_backoff(
                lambda: self._post(payload), self.retry, retry_on=(httpx.TransportError,)
            )
            response.raise_for_status()
            body = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            self.breaker.record_failure()
            logger.error("Push HTTP error: %s", e)
            return {"status": "error", "success": False, "error": str(e)}
        except httpx.RequestError as e:
            self.breaker.record_failure()
            logger.error("Push request error: %s", e)
            return {"status": "error", "success": False, "error": str(e)}
        except ValueError as e:
            # Non-JSON body on a 2xx: the message was accepted
            logger.debug("Push response was not JSON: %s", e)
            body = {}

        self.breaker.record_success()

        if body.get("failure"):
            errors = [r.get("error") for r in body.get("results", []) if r.get("error")]
            reason = errors[0] if errors else "rejected"
            return {
                "status": "rejected",
                "success": False,
                "error": reason,
                "invalid_token": reason in INVALID_TOKEN_ERRORS,
            }

        return {"status": "sent", "success": True, "message_id": _message_id(body)}

    def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"key={self.server_key}"}
        if self._client is not None:
            return self._client.post(
                self.endpoint, json=payload, headers=headers, timeout=self.timeout
            )
        return httpx.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)

    def _format_payload(self, token: str, message: dict) -> dict:
        """Legacy FCM HTTP shape; high priority so Android wakes the app."""
        return {
            "to": token,
            "priority": "high",
            "notification": {"title": message["title"], "body": message["body"]},
            "data": {k: str(v) for k, v in message.get("data", {}).items()},
        }


def _message_id(body: dict) -> str:
    results = body.get("results") or []
    if results:
        return results[0].get("message_id", "")
    return body.get("name", "")
