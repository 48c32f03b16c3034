"""
Chat model factory - builds a LangChain chat model for a provider/model pair.

Provider packages are imported lazily so only the ones actually configured
need to be installed.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from swarm_engine.config import LLMConfig
from swarm_engine.utils.exceptions import ConfigurationError, MissingDependencyError
from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"


@dataclass
class ModelSpec:
    """What the graph asks the factory for."""
    provider: str
    model: str
    api_key: Optional[str] = None
    api_endpoint: Optional[str] = None
    temperature: float = 0.2


def resolve_model_spec(
    agent_provider: Optional[str],
    agent_model: Optional[str],
    credential_id: Optional[str],
    api_endpoint: Optional[str],
    settings: Dict[str, Any],
    credentials: Dict[str, Any],
    defaults: LLMConfig,
) -> ModelSpec:
    """
    Pick the orchestration model.

    ``settings["orchestrator_engine"]`` wins when it names a provider; otherwise
    the agent's own provider and model are used, falling back to ``defaults``.
    """
    engine = settings.get("orchestrator_engine") or settings.get("orchestratorEngine") or {}
    if isinstance(engine, dict) and engine.get("provider"):
        provider = str(engine["provider"])
        model = str(engine.get("model") or defaults.model_name)
        credential_id = engine.get("credential_id") or engine.get("credentialId")
        api_endpoint = engine.get("api_endpoint") or engine.get("apiEndpoint")
    else:
        provider = agent_provider or defaults.provider
        model = agent_model or defaults.model_name

    api_key = defaults.api_key
    if credential_id:
        record = credentials.get(credential_id)
        if not isinstance(record, dict):
            raise ConfigurationError(
                setting_name="credential_id",
                message=f'Credential "{credential_id}" not found',
                actual_value=credential_id,
            )
        api_key = record.get("api_key") or record.get("value") or api_key

    return ModelSpec(
        provider=provider.lower(),
        model=model,
        api_key=api_key,
        api_endpoint=api_endpoint or defaults.base_url,
        temperature=defaults.temperature,
    )


def build_chat_model(spec: ModelSpec):
    """
    Initialize a chat model for the given spec.

    Returns:
        A LangChain BaseChatModel supporting ``bind_tools``
    """
    provider = spec.provider
    kwargs: Dict[str, Any] = {"model": spec.model, "temperature": spec.temperature}
    if spec.api_key:
        kwargs["api_key"] = spec.api_key

    try:
        if provider == "anthropic":
            from langchain_anthropic import ChatAnthropic

            if spec.api_endpoint:
                kwargs["base_url"] = spec.api_endpoint
            return ChatAnthropic(**kwargs)

        elif provider == "openai":
            from langchain_openai import ChatOpenAI

            if spec.api_endpoint:
                kwargs["base_url"] = spec.api_endpoint
            return ChatOpenAI(**kwargs)

        elif provider == "deepseek":
            # OpenAI-compatible API
            from langchain_openai import ChatOpenAI

            kwargs["base_url"] = spec.api_endpoint or DEEPSEEK_BASE_URL
            return ChatOpenAI(**kwargs)

        else:
            raise ConfigurationError(
                setting_name="provider",
                message=f"Unsupported LLM provider: {provider}. Supported providers: anthropic, openai, deepseek",
                actual_value=provider,
            )
    except ImportError as e:
        package = "langchain-openai" if provider == "deepseek" else f"langchain-{provider}"
        raise MissingDependencyError(
            package_name=package,
            install_command=f"pip install {package}",
            purpose=f"{provider} LLM provider",
        ) from e
