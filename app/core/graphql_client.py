import logging
import httpx
from typing import Dict, Any, Optional, List
from app.core.config import settings
from app.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

FOLLOW_FIELDS = "id direction actor_id actor_inbox actor_name state follow_activity_id created_at state_changed_at"
ACCOUNT_FIELDS = "id username display_name summary actor_id public_key_pem created_at"
POST_FIELDS = "post_id author body origin created_at"


class GraphQLResponseError(StoreUnavailable):
    """The data service answered, but with GraphQL errors."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        messages = "; ".join(str(e.get("message", e)) for e in errors)
        super().__init__(f"GraphQL errors: {messages}")

    @property
    def is_unique_violation(self) -> bool:
        return any("unique" in str(e.get("message", "")).lower() for e in self.errors)


class GraphQLClient:
    """GraphQL client for the data service"""
    # 共享 httpx AsyncClient（由應用啟動時注入）
    shared_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def set_shared_client(cls, client: Optional[httpx.AsyncClient]) -> None:
        cls.shared_client = client

    def __init__(self, endpoint: Optional[str] = None, token: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint or settings.GRAPHQL_ENDPOINT
        self.token = token or settings.GRAPHQL_TOKEN
        # 優先採用注入 client；否則採用 shared_client；最後回退到本地臨時 client
        self.client = client or GraphQLClient.shared_client
        self.headers = {
            "Content-Type": "application/json",
        }
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a query and return its ``data`` member.

        Raises:
            StoreUnavailable: Transport failure or non-2xx response.
            GraphQLResponseError: The response carried GraphQL errors.
        """
        payload = {"query": query, "variables": variables or {}}
        try:
            if self.client is not None:
                response = await self.client.post(self.endpoint, json=payload, headers=self.headers)
            else:
                async with httpx.AsyncClient() as temp_client:
                    response = await temp_client.post(self.endpoint, json=payload, headers=self.headers, timeout=30.0)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("GraphQL request to %s failed: %s", self.endpoint, e)
            raise StoreUnavailable(f"Data service unreachable: {e}") from e

        body = response.json()
        if body.get("errors"):
            raise GraphQLResponseError(body["errors"])
        return body.get("data") or {}

    async def mutation(self, mutation: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.query(mutation, variables)

    # Local account

    async def get_local_account(self) -> Optional[Dict[str, Any]]:
        query = f"""
        query GetLocalAccount {{
          LocalAccounts(take: 1) {{ {ACCOUNT_FIELDS} }}
        }}
        """
        items = (await self.query(query)).get("LocalAccounts") or []
        return items[0] if items else None

    async def create_local_account(self, data: Dict[str, Any]) -> Dict[str, Any]:
        mutation = f"""
        mutation CreateLocalAccount($data: LocalAccountCreateInput!) {{
          createLocalAccount(data: $data) {{ {ACCOUNT_FIELDS} }}
        }}
        """
        return (await self.mutation(mutation, {"data": data}))["createLocalAccount"]

    # Follow relationships

    async def get_follow_by_active_key(self, active_key: str) -> Optional[Dict[str, Any]]:
        query = f"""
        query GetActiveFollow($key: String!) {{
          FollowRelationships(where: {{ active_key: {{ equals: $key }} }}, take: 1) {{ {FOLLOW_FIELDS} }}
        }}
        """
        items = (await self.query(query, {"key": active_key})).get("FollowRelationships") or []
        return items[0] if items else None

    async def create_follow(self, data: Dict[str, Any]) -> Dict[str, Any]:
        mutation = f"""
        mutation CreateFollow($data: FollowRelationshipCreateInput!) {{
          createFollowRelationship(data: $data) {{ {FOLLOW_FIELDS} }}
        }}
        """
        return (await self.mutation(mutation, {"data": data}))["createFollowRelationship"]

    async def transition_follow(self, id: str, expected: str, state: str) -> Optional[Dict[str, Any]]:
        """Compare-and-set on ``state``; returns None when ``expected`` no longer holds."""
        mutation = f"""
        mutation TransitionFollow($id: ID!, $expected: String!, $state: String!) {{
          transitionFollowRelationship(id: $id, expected: $expected, state: $state) {{ {FOLLOW_FIELDS} }}
        }}
        """
        result = await self.mutation(mutation, {"id": id, "expected": expected, "state": state})
        return result.get("transitionFollowRelationship")

    async def list_follows(
        self, direction: str, states: List[str], limit: int = 100, skip: int = 0
    ) -> List[Dict[str, Any]]:
        query = f"""
        query ListFollows($direction: String!, $states: [String!], $take: Int, $skip: Int) {{
          FollowRelationships(
            where: {{ direction: {{ equals: $direction }}, state: {{ in: $states }} }},
            orderBy: [{{ created_at: asc }}],
            take: $take,
            skip: $skip
          ) {{ {FOLLOW_FIELDS} }}
        }}
        """
        variables = {"direction": direction, "states": states, "take": limit, "skip": skip}
        result = await self.query(query, variables)
        return result.get("FollowRelationships") or []

    # Posts

    async def create_post(self, data: Dict[str, Any]) -> Dict[str, Any]:
        mutation = f"""
        mutation CreatePost($data: PostCreateInput!) {{
          createPost(data: $data) {{ {POST_FIELDS} }}
        }}
        """
        return (await self.mutation(mutation, {"data": data}))["createPost"]

    async def list_posts(self, origin: str, limit: int = 20) -> List[Dict[str, Any]]:
        query = f"""
        query ListPosts($origin: String!, $take: Int) {{
          Posts(where: {{ origin: {{ equals: $origin }} }}, orderBy: [{{ created_at: desc }}], take: $take) {{ {POST_FIELDS} }}
        }}
        """
        return (await self.query(query, {"origin": origin, "take": limit})).get("Posts") or []

    async def count_posts(self, origin: str) -> int:
        query = """
        query CountPosts($origin: String!) {
          PostsCount(where: { origin: { equals: $origin } })
        }
        """
        return (await self.query(query, {"origin": origin})).get("PostsCount") or 0
