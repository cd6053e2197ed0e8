"""
Minimal Proxmox VE API client.

Authenticates with a ``user@realm:password`` token against /access/ticket and
runs shell commands on a node. Calls are synchronous; async callers run them
in a worker thread.
"""

import json
import logging
import ssl
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from pxclean.config.validators import validate_token
from pxclean.exceptions import AuthenticationError, ProxmoxAPIError
from pxclean.models import CommandResult, NodeStatus

logger = logging.getLogger(__name__)

API_PORT = 8006
DEFAULT_TIMEOUT = 30
MAX_RETRIES = 3
BASE_DELAY = 1.0


class ProxmoxClient:
    """
    Client for a single Proxmox node.

    Args:
        host: Node hostname or address.
        token: Credentials as ``user@realm:password``.
        node_id: Node name used in /nodes/<node_id> paths.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt for retryable failures.
        base_delay: Initial backoff in seconds, doubled on each retry.

    Raises:
        ValidationError: If the token is not of the form user@realm:password.
    """

    def __init__(
        self,
        host: str,
        token: str,
        node_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY,
    ):
        validate_token(token)
        self.host = host
        self.node_id = node_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.base_url = f"https://{host}:{API_PORT}/api2/json"
        self._username, _, self._password = token.partition(":")
        self._ticket: Optional[str] = None
        self._csrf_token: Optional[str] = None

        # Proxmox nodes ship self-signed certificates
        self._ssl_context = ssl.create_default_context()
        self._ssl_context.check_hostname = False
        self._ssl_context.verify_mode = ssl.CERT_NONE

    def is_authenticated(self) -> bool:
        return self._ticket is not None

    def _clear_session(self):
        self._ticket = None
        self._csrf_token = None

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._ticket:
            headers["Cookie"] = f"PVEAuthCookie={self._ticket}"
            headers["CSRFPreventionToken"] = self._csrf_token or ""
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            self.base_url + path, data=body, headers=headers, method=method
        )
        try:
            with urllib.request.urlopen(
                req, timeout=self.timeout, context=self._ssl_context
            ) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            if e.code == 401:
                self._clear_session()
            raise ProxmoxAPIError(
                f"{method} {path} failed (HTTP {e.code}: {e.reason})", status=e.code
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise ProxmoxAPIError(f"{method} {path} failed: {reason}") from e

        try:
            return json.loads(raw).get("data") if raw else None
        except json.JSONDecodeError as e:
            raise ProxmoxAPIError(f"{method} {path} returned invalid JSON") from e

    def _with_retry(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Call the API, retrying with exponential backoff except on 4xx."""
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(method, path, payload)
            except ProxmoxAPIError as e:
                if e.status is not None and 400 <= e.status < 500:
                    raise
                if attempt == self.max_retries:
                    raise
                delay = self.base_delay * (2**attempt)
                logger.warning(
                    "Proxmox API call %s %s failed (%s), retrying in %.1fs",
                    method,
                    path,
                    e,
                    delay,
                )
                time.sleep(delay)

    def authenticate(self):
        """
        Obtain a ticket and CSRF token.

        Raises:
            AuthenticationError: If the credentials are rejected or the API
                cannot be reached.
        """
        self._clear_session()
        try:
            data = self._request(
                "POST",
                "/access/ticket",
                {"username": self._username, "password": self._password},
            )
        except ProxmoxAPIError as e:
            raise AuthenticationError(
                f"Failed to authenticate with Proxmox API: {e}", status=e.status
            ) from e
        if not data or "ticket" not in data:
            raise AuthenticationError("Invalid authentication response")
        self._ticket = data["ticket"]
        self._csrf_token = data.get("CSRFPreventionToken")
        logger.info("Authenticated with Proxmox API on %s", self.host)

    def _ensure_authenticated(self):
        if not self.is_authenticated():
            self.authenticate()

    def execute_command(self, command: str) -> CommandResult:
        """Run a shell command on the node."""
        self._ensure_authenticated()
        data = self._with_retry("POST", f"/nodes/{self.node_id}/execute", {"command": command})
        data = data or {}
        return CommandResult(
            stdout=data.get("stdout", "") or "",
            stderr=data.get("stderr", "") or "",
            exit_code=int(data.get("exitstatus", 0) or 0),
        )

    def get_node_status(self) -> NodeStatus:
        self._ensure_authenticated()
        data = self._with_retry("GET", f"/nodes/{self.node_id}/status")
        if not data:
            raise ProxmoxAPIError("Invalid node status response")
        memory = data.get("memory") or {}
        return NodeStatus(
            status=data.get("status", "unknown"),
            uptime=int(data.get("uptime", 0)),
            cpu=float(data.get("cpu", 0)),
            memory_used=int(memory.get("used", 0)),
            memory_total=int(memory.get("total", 0)),
        )
