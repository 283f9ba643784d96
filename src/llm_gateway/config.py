from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from typing import Any, Final, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class Provider(StrEnum):
    """A wire protocol, not a vendor: OpenAI exposes two of them."""
    OPENAI = "openai"
    OPENAI_RESPONSES = "openai-responses"
    ANTHROPIC = "anthropic"
    BEDROCK = "bedrock"
    ZHIPUAI = "zhipuai"


_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.OPENAI_RESPONSES: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.ZHIPUAI: "ZHIPUAI_API_KEY",
}

DEFAULT_ZHIPUAI_BASE_URL: Final = "https://open.bigmodel.cn/api/paas/v4"
DEFAULT_BEDROCK_REGION: Final = "us-east-1"


def get_api_key(provider: Provider) -> str:
    """Return the API key for *provider* or raise RuntimeError."""
    try:
        env_var = _ENV_VARS[provider]
    except KeyError:
        raise RuntimeError(f"No config for {provider!s}") from None

    try:
        return os.environ[env_var]
    except KeyError as exc:
        raise RuntimeError(f"{env_var} missing") from exc


@dataclass(frozen=True, slots=True)
class BedrockSettings:
    region: str = DEFAULT_BEDROCK_REGION
    base_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    openai_base_url: Optional[str] = None
    anthropic_base_url: Optional[str] = None
    zhipuai_base_url: str = DEFAULT_ZHIPUAI_BASE_URL
    bedrock: BedrockSettings = field(default_factory=BedrockSettings)
    token_prices: dict[str, dict[str, float]] = field(default_factory=dict)


def _load_token_prices(raw: Optional[str]) -> dict[str, dict[str, float]]:
    if not raw:
        return {}
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("LLM_GATEWAY_TOKEN_PRICES is not valid JSON, ignoring it")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("LLM_GATEWAY_TOKEN_PRICES must be a JSON object, ignoring it")
        return {}
    return {
        str(model): {k: float(v) for k, v in price.items()}
        for model, price in parsed.items()
        if isinstance(price, dict)
    }


@lru_cache(maxsize=1)
def get_settings() -> GatewaySettings:
    """Read gateway settings from the environment (and a .env file, if any)."""
    return GatewaySettings(
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
        anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL") or None,
        zhipuai_base_url=os.getenv("ZHIPUAI_BASE_URL") or DEFAULT_ZHIPUAI_BASE_URL,
        bedrock=BedrockSettings(
            region=os.getenv("BEDROCK_REGION") or os.getenv("AWS_REGION") or DEFAULT_BEDROCK_REGION,
            base_url=os.getenv("BEDROCK_BASE_URL") or None,
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
            session_token=os.getenv("AWS_SESSION_TOKEN") or None,
        ),
        token_prices=_load_token_prices(os.getenv("LLM_GATEWAY_TOKEN_PRICES")),
    )


__all__ = [
    "Provider",
    "get_api_key",
    "BedrockSettings",
    "GatewaySettings",
    "get_settings",
]
