import hashlib
import uuid
from datetime import datetime
from typing import Dict, Any, Optional
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from app.core.config import settings
from app.models.activitypub import LocalUser, Post

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"
PUBLIC_ADDRESS = "https://www.w3.org/ns/activitystreams#Public"

def generate_actor_id(username: str) -> str:
    """生成 Actor ID"""
    return f"{settings.base_url}/users/{username}"

def generate_activity_id(actor_id: str, activity_type: str) -> str:
    """生成 Activity ID（隨機）"""
    return f"{actor_id}/activities/{activity_type.lower()}/{uuid.uuid4().hex}"

def derive_activity_id(actor_id: str, activity_type: str, *parts: Optional[str]) -> str:
    """Deterministic activity id: the same inputs always yield the same id."""
    digest = hashlib.sha256("\n".join(p or "" for p in parts).encode("utf-8")).hexdigest()
    return f"{actor_id}/activities/{activity_type.lower()}/{digest[:32]}"

def generate_post_id(actor_id: str) -> str:
    """生成 Note ID"""
    return f"{actor_id}/posts/{uuid.uuid4().hex}"

def isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")

def create_actor_object(user: LocalUser) -> Dict[str, Any]:
    """建立 Actor 物件"""
    return {
        "@context": [AS_CONTEXT, SECURITY_CONTEXT],
        "id": user.actor_id,
        "type": "Person",
        "preferredUsername": user.username,
        "name": user.display_name or user.username,
        "summary": user.summary or "",
        "inbox": user.inbox_url,
        "outbox": user.outbox_url,
        "followers": user.followers_url,
        "following": user.following_url,
        "endpoints": {"sharedInbox": f"{settings.base_url}/inbox"},
        "published": isoformat(user.created_at),
        "publicKey": {
            "id": f"{user.actor_id}#main-key",
            "owner": user.actor_id,
            "publicKeyPem": user.public_key_pem,
        },
    }

def create_note_object(post: Post, user: LocalUser) -> Dict[str, Any]:
    """建立 Note 物件"""
    return {
        "id": post.id,
        "type": "Note",
        "attributedTo": post.author,
        "content": post.body,
        "published": isoformat(post.created_at),
        "to": [PUBLIC_ADDRESS],
        "cc": [user.followers_url],
    }

def create_ordered_collection(collection_id: str, items: list) -> Dict[str, Any]:
    return {
        "@context": AS_CONTEXT,
        "id": collection_id,
        "type": "OrderedCollection",
        "totalItems": len(items),
        "orderedItems": items,
    }

def generate_key_pair() -> tuple[str, str]:
    """生成 RSA 金鑰對"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )

    public_key = private_key.public_key()

    # 序列化公鑰
    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    # 序列化私鑰
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    return public_pem, private_pem

