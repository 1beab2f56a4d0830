from typing import Optional
import json
import logging

from dotenv import load_dotenv
import httpx

from .config import get_env_or_config

logger = logging.getLogger(__name__)

# Recursive pull pattern shared by page and block lookups.
BLOCK_PULL_PATTERN = (
    "[:block/uid :node/title :block/string :block/order :block/heading :block/open "
    "{:block/children ...}]"
)


class RoamClient(object):
    def __init__(self, api_token: str | None = None, graph: str | None = None, timeout: float = 10.0):
        load_dotenv()
        if api_token is None:
            api_token = get_env_or_config("ROAM_API_TOKEN", "roam.api_token")
        if graph is None:
            graph = get_env_or_config("ROAM_API_GRAPH", "roam.api_graph")
        if not api_token or not graph:
            raise ValueError("ROAM_API_TOKEN and ROAM_API_GRAPH must be set")
        self.api_token = str(api_token)
        self.graph = str(graph)
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def connect(self):
        headers = {
            'Content-Type': 'application/json; charset=utf-8',
            'X-Authorization': f"Bearer {self.api_token}"
        }
        self._client = httpx.AsyncClient(
            base_url=f"https://api.roamresearch.com/api/graph/{self.graph}",
            headers=headers,
            follow_redirects=True,
            timeout=self.timeout,
        )
        return self

    async def disconnect(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        self.connect()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.disconnect()

    async def _request(self, path, data, parse_response=True):
        assert self._client is not None, "Client not initialized"
        resp = await self._client.post(path, content=json.dumps(data))
        resp.raise_for_status()
        if parse_response and resp.content:
            return resp.json()
        return None

    async def q(self, query: str, args: Optional[list] = None):
        body = await self._request("/q", {
            "query": query,
            "args": args or [],
        })
        if not body:
            return None
        return body.get("result")

    async def batch_actions(self, actions: list[dict]):
        logger.debug(f"Submitting {len(actions)} batch actions")
        return await self._request("/write", {
            "action": "batch-actions",
            "actions": actions,
        })

    async def _pull_one(self, where: str, arg: str) -> dict | None:
        result = await self.q(
            f"[:find (pull ?e {BLOCK_PULL_PATTERN}) :in $ ?arg :where {where}]",
            [arg],
        )
        if not result:
            return None
        return result[0][0]

    async def get_page_by_title(self, title: str) -> dict | None:
        return await self._pull_one("[?e :node/title ?arg]", title)

    async def get_block_by_uid(self, uid: str) -> dict | None:
        return await self._pull_one("[?e :block/uid ?arg]", uid)
