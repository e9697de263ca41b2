"""Persistence for StandupLLM: encrypted Jira credentials, shadow issue references and update drafts."""

from standupllm.db.encryption import EncryptionKeyMissingError, TokenEncryptor
from standupllm.db.standup_storage import PersonalUpdateDraft, StandupStorage
from standupllm.db.token_storage import Credential, TokenStorage

__all__ = [
    "Credential",
    "EncryptionKeyMissingError",
    "PersonalUpdateDraft",
    "StandupStorage",
    "TokenEncryptor",
    "TokenStorage",
]
