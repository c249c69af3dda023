"""Telegram Bot API server endpoints.

A :class:`TelegramAPIServer` describes where method calls and file downloads
go, so a self-hosted Bot API server can be used in place of the public one.
The instance is handed to :class:`sdk.client.BotClient` explicitly.
"""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True, slots=True)
class TelegramAPIServer:
    """URL templates for one Bot API server.

    ``base`` and ``file`` are ``str.format`` templates taking ``token`` and
    ``method`` / ``path`` respectively.
    """

    base: str
    file: str

    @classmethod
    def from_base(cls, base: str) -> TelegramAPIServer:
        """Build templates from a server root such as ``https://api.telegram.org``."""
        base = base.rstrip("/")
        return cls(
            base=f"{base}/bot{{token}}/{{method}}",
            file=f"{base}/file/bot{{token}}/{{path}}",
        )

    def api_url(self, token: str, method: str) -> str:
        """Return the URL for calling *method* with *token*."""
        return self.base.format(token=token, method=method)

    def file_url(self, token: str, path: str) -> str:
        """Return the download URL for the file at *path*."""
        return self.file.format(token=token, path=path)


PRODUCTION_SERVER = TelegramAPIServer.from_base("https://api.telegram.org")
