"""Shared pytest fixtures for the live chat tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from omegaconf import OmegaConf  # noqa: E402

from src.livechat.models.chat import Participant  # noqa: E402


@pytest.fixture
def participant():
    return Participant(name="Nimal", email="nimal@example.com")


@pytest.fixture
def cfg(tmp_path):
    return OmegaConf.create({
        "api": {"host": "127.0.0.1", "port": 8000, "reload": False,
                "cors_origins": ["*"]},
        "store": {"backend": "memory"},
        "mongodb": {"db_name": "livechat_test",
                    "session_collection": "chat_sessions",
                    "message_collection": "chat_messages"},
        "chat": {
            "max_attachment_bytes": 1024,
            "escalation_grace_seconds": 0.05,
            "typing_timeout_seconds": 0.05,
            "history_limit": 200,
            "upload_dir": str(tmp_path / "uploads"),
            "upload_url_prefix": "/uploads/chat-files",
            "allowed_attachment_types": ["jpeg", "jpg", "png", "gif", "pdf",
                                         "txt", "plain"],
        },
        "bot": {
            "knowledge_file": "bot_knowledge",
            "fallback_reply": "I'm having trouble understanding. "
                              "Let me connect you with our admin!",
            "escalation_reply": "Let me connect you with our admin.",
            "default_reply": "Ask me about services, hours or pricing.",
            "escalation_keywords": ["admin", "human", "person", "manager",
                                    "help", "problem", "issue", "complaint"],
        },
        "client": {"server_url": "http://testserver",
                   "ws_url": "ws://testserver/ws/chat",
                   "request_timeout": 5.0,
                   "open_timeout": 5.0,
                   "welcome_message": None},
    })


