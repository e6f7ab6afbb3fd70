from typing import Dict, List, Optional

import httpx
import pytest

from atcddd.services.crawl.cache import MemoryCache
from atcddd.services.crawl.http import RateLimitedFetcher


def parent_page(code: str, children: Dict[str, str], extra_links: Optional[Dict[str, str]] = None) -> str:
    links = dict(extra_links or {})
    links.update(children)
    anchors = "\n".join(
        f'<b><a href="./?code={c}&showdescription=no">{name}</a></b><br/>' for c, name in links.items()
    )
    return f"""
    <html><body><div id="content">
      <a href="./?code={code}&showdescription=no">{code} (this page)</a>
      {anchors}
      <a href="./?code=X99">Other branch</a>
    </div></body></html>
    """


def leaf_page(rows: List[List[str]]) -> str:
    body = "\n".join("<tr>" + "".join(f"<td>{c}</td>" for c in r) + "</tr>" for r in rows)
    return f"""
    <html><body><div id="content">
      <table>
        <tr><td>ATC code</td><td>Name</td><td>DDD</td><td>U</td><td>Adm.R</td><td>Note</td></tr>
        {body}
      </table>
    </div></body></html>
    """


# A small slice of the D branch. BFS from D visits D, D01, D01A, D01AA, D01AC.
SITE_PAGES = {
    "D": parent_page("D", {"D01": "ANTIFUNGALS FOR DERMATOLOGICAL USE"}),
    "D01": parent_page("D01", {"D01A": "ANTIFUNGALS FOR TOPICAL USE"}, extra_links={"D": "DERMATOLOGICALS"}),
    "D01A": parent_page(
        "D01A",
        {"D01AA": "Antibiotics", "D01AC": "Imidazole and  triazole\n derivatives"},
        extra_links={"D": "DERMATOLOGICALS", "D01": "ANTIFUNGALS"},
    ),
    "D01AA": leaf_page(
        [
            ["D01AA01", "Nystatin", "1", "g", "O", ""],
            ["", "", "0.5", "g", "P", "Alt route"],
            ["D01AA02", "Natamycin", "", "", "", ""],
        ]
    ),
    "D01AC": leaf_page([["D01AC01", "Clotrimazole", "", "", "", ""]]),
}


class FakeSite:
    """MockTransport-backed WHO index. Unknown codes answer 404."""

    def __init__(self, pages: Dict[str, str], statuses: Optional[Dict[str, int]] = None) -> None:
        self.pages = pages
        self.statuses = statuses or {}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = request.url.params.get("code", "")
        status = self.statuses.get(code)
        if status is not None:
            return httpx.Response(status, text="error")
        if code not in self.pages:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=self.pages[code], headers={"Content-Type": "text/html; charset=utf-8"})

    @property
    def requested_codes(self) -> List[str]:
        return [r.url.params.get("code") for r in self.requests]

    def fetcher(self, **kwargs) -> RateLimitedFetcher:
        kwargs.setdefault("cache", MemoryCache())
        kwargs.setdefault("min_delay", 0)
        kwargs.setdefault("max_attempts", 1)
        kwargs.setdefault("sleep", lambda s: None)
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return RateLimitedFetcher(client=client, **kwargs)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite(dict(SITE_PAGES))
