"""Docker Hub API client.

Docker Hub does not expose the registry catalog endpoint, so whole
namespaces are listed through hub.docker.com's own API instead:

    POST /v2/users/login/                 → {"token": "...", "message": "..."}
    GET  /v2/repositories/<ns>/?page_size=1000
         Authorization: JWT <token>       → {"count": N, "results": [...]}

Only the first page is fetched. Namespaces with more than PAGE_SIZE
repositories are truncated.
"""

import httpx
from pydantic import BaseModel, Field, ValidationError

from registry_mirror.errors import DiscoveryError

HUB_URL = "https://hub.docker.com"
PAGE_SIZE = 1000


class HubLoginResponse(BaseModel):
    token: str = ""
    message: str = ""


class HubRepository(BaseModel):
    user: str = ""
    name: str
    namespace: str


class HubRepositoriesResponse(BaseModel):
    count: int = 0
    results: list[HubRepository] = Field(default_factory=list)


class DockerHubClient:
    def __init__(self, http_client: httpx.Client | None = None, base_url: str = HUB_URL):
        self._http = http_client or httpx.Client(timeout=30.0)
        self.base_url = base_url.rstrip("/")

    def login(self, username: str, password: str) -> str:
        """Exchange Hub credentials for a JWT."""
        response = self._request(
            "POST",
            f"{self.base_url}/v2/users/login/",
            json={"username": username, "password": password},
            headers={"Content-Type": "application/json"},
        )
        login = _parse(HubLoginResponse, response)
        if not login.token:
            raise DiscoveryError(f"Docker Hub login returned no token: {login.message}")
        return login.token

    def list_repositories(self, namespace: str, token: str) -> list[HubRepository]:
        response = self._request(
            "GET",
            f"{self.base_url}/v2/repositories/{namespace}/",
            params={"page_size": PAGE_SIZE},
            headers={
                "Content-type": "application/json",
                "Authorization": f"JWT {token}",
            },
        )
        return _parse(HubRepositoriesResponse, response).results

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Docker Hub {method} {url} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Docker Hub {method} {url} failed: {e}") from e
        return response


def _parse(model: type[BaseModel], response: httpx.Response):
    try:
        return model.model_validate_json(response.content)
    except ValidationError as e:
        raise DiscoveryError(f"unexpected Docker Hub response from {response.url}: {e}") from e
