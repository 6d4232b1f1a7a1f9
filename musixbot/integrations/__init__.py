"""
Integrations package initialization.
Exports the collaborator interfaces and their concrete adapters.
"""
from .base import ChainVerifier, KeyValueStore, SocialClient, GenerationProvider
from .chain import JsonRpcChainVerifier
from .kv_store import InMemoryKeyValueStore, RedisKeyValueStore, create_kv_store
from .music import HttpGenerationProvider
from .social import DryRunSocialClient

__all__ = [
    "ChainVerifier",
    "KeyValueStore",
    "SocialClient",
    "GenerationProvider",
    "JsonRpcChainVerifier",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_kv_store",
    "HttpGenerationProvider",
    "DryRunSocialClient",
]
