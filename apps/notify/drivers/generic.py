"""Generic JSON webhook notification driver."""

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from apps.notify.drivers.base import BaseNotifyDriver, NotificationMessage

logger = logging.getLogger(__name__)


class GenericNotifyDriver(BaseNotifyDriver):
    """Posts the digest as JSON to a configured endpoint."""

    name = "generic"

    def is_disabled(self, config: dict[str, Any]) -> bool:
        return not config or bool(config.get("disabled"))

    def validate_config(self, config: dict[str, Any]) -> bool:
        # Allow empty/default config to mean "notifications disabled" (no-op)
        if self.is_disabled(config):
            return True

        if "endpoint" not in config and "webhook_url" not in config:
            return False

        url = config.get("endpoint") or config.get("webhook_url", "")
        return url.startswith("http://") or url.startswith("https://")

    def send(self, message: NotificationMessage, config: dict[str, Any]) -> dict[str, Any]:
        if not self.validate_config(config):
            return {
                "success": False,
                "error": "Invalid configuration (endpoint or webhook_url required)",
            }
        if self.is_disabled(config):
            logger.info("Generic notify driver disabled; dropping digest '%s'", message.subject)
            return {"success": True, "message_id": None, "metadata": {"disabled": True}}

        endpoint = config.get("endpoint") or config.get("webhook_url")
        method = config.get("method", "POST").upper()
        headers = config.get("headers", {})
        timeout = config.get("timeout", 30)

        try:
            payload_json = json.dumps(self._message_to_dict(message), default=str).encode("utf-8")

            request_headers = {
                "Content-Type": "application/json",
                "User-Agent": "SupportPages/1.0",
            }
            request_headers.update(headers)

            request = urllib.request.Request(
                str(endpoint),
                data=payload_json if method in ("POST", "PUT", "PATCH") else None,
                headers=request_headers,
                method=method,
            )

            with urllib.request.urlopen(request, timeout=timeout) as response:
                response_body = response.read().decode("utf-8")
                status_code = response.getcode()

                try:
                    response_data = json.loads(response_body)
                except json.JSONDecodeError:
                    response_data = {"raw": response_body}

                logger.info(f"Digest sent to {endpoint}: {status_code}")

                return {
                    "success": True,
                    "message_id": f"generic_{hash(str(endpoint) + message.subject) & 0x7FFFFFFF:08x}",
                    "metadata": {
                        "endpoint": endpoint,
                        "method": method,
                        "status_code": status_code,
                        "response": response_data,
                    },
                }

        except urllib.error.HTTPError as e:
            return self._handle_http_error(e, "Generic")
        except urllib.error.URLError as e:
            return self._handle_url_error(e, "Generic")
        except Exception as e:
            return self._handle_exception(e, "Generic", "send notification")
