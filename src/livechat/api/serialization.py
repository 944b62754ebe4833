from typing import Any
from bson import ObjectId
from src.livechat.models.chat import ChatMessage, ChatSession


def serialize_mongodb_doc(obj: Any) -> Any:
    """Recursively converts ObjectId to string in any data structure"""
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: serialize_mongodb_doc(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [serialize_mongodb_doc(item) for item in obj]
    return obj


def message_from_doc(doc: dict) -> ChatMessage:
    doc = serialize_mongodb_doc(dict(doc))
    doc["id"] = doc.pop("_id", doc.get("id"))
    return ChatMessage.model_validate(doc)


def session_from_doc(doc: dict) -> ChatSession:
    doc = serialize_mongodb_doc(dict(doc))
    doc.pop("_id", None)
    return ChatSession.model_validate(doc)
