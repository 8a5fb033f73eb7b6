"""HTTP downloads bounded by a total deadline.

httpx timeouts apply to each network step (connect, every read), so a server
trickling bytes can keep a plain ``client.get`` alive far past its timeout.
``download`` streams the body instead and gives up once the whole exchange
has taken longer than the budget.
"""

import time
from dataclasses import dataclass

import httpx


class DeadlineExceeded(httpx.TimeoutException):
    """Raised when a download runs past its total time budget."""


@dataclass
class Download:
    """A fully read response."""

    url: str
    status_code: int
    headers: httpx.Headers
    content: bytes
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        try:
            return self.content.decode(self.encoding, errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")


def download(
    client: httpx.Client,
    url: str,
    timeout: float,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    read_body: bool = True,
) -> Download:
    """Issue a request and read its body within ``timeout`` seconds in total.

    With read_body=False only the status line and headers are awaited.

    Raises:
        DeadlineExceeded: If the budget runs out before the body is read.
        httpx.HTTPError: On any other transport failure.
    """
    deadline = time.monotonic() + timeout
    with client.stream(
        method, url, headers=headers, timeout=timeout, follow_redirects=True
    ) as response:
        chunks = []
        if read_body:
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise DeadlineExceeded(
                        f"download of {url} exceeded {timeout}s", request=response.request
                    )
        if time.monotonic() > deadline:
            raise DeadlineExceeded(
                f"download of {url} exceeded {timeout}s", request=response.request
            )
        return Download(
            url=str(response.url),
            status_code=response.status_code,
            headers=response.headers,
            content=b"".join(chunks),
            encoding=response.charset_encoding or "utf-8",
        )
