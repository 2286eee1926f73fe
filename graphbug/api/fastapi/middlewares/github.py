import hashlib
import hmac
from typing import Optional


class GithubMiddleware:
    def verify_webhook_signature(self, body: bytes, signature: Optional[str], secret: str) -> bool:
        """Check an ``X-Hub-Signature-256`` header against the raw request body."""
        if not signature or not signature.startswith("sha256="):
            return False

        digest = hmac.new(
            secret.encode("utf-8"),
            msg=body,
            digestmod=hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(f"sha256={digest}", signature)
