from typing import Any, Dict, List, Optional
import httpx

class MailClient:
    """Transactional mail over an HTTP API (Resend-compatible ``POST /emails``)."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self):
        await self._http.aclose()

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def send_mail(self, to_email: str, subject: str, html: str, reply_to: Optional[List[str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/emails"
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to
        resp = await self._http.post(url, headers=self._auth_headers(), json=payload)
        resp.raise_for_status()
        return resp.json() if resp.content else {}
