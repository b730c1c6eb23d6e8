"""BlogFlow completion client — one uniform call for every pipeline stage.

Features
--------
- **Model tiers**: stages that need heavier reasoning (planning,
  orchestration, outlining, review) get the provider's *reasoning* model;
  brainstorming and writing get the *fast* model.
- **Rate limiting**: a fixed minimum interval between consecutive calls.
- **Retry**: exponential backoff with jitter for transient failures.
  Authentication failures are raised immediately as
  :class:`~blogflow.errors.AuthenticationError`.
- **Normalisation**: whatever shape the SDK returns is reduced to plain text;
  an empty reply counts as a failed attempt.

Supported providers: Anthropic (default), OpenAI, Google Gemini, OpenRouter.

Per call::

    idle → rate-limit-wait → in-flight → success
                                       ↘ retry-wait → in-flight (≤ max_retries)
                                       ↘ failed
"""

from __future__ import annotations

import os
import random
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from blogflow.errors import AuthenticationError, CompletionError
from blogflow.logging import get_logger
from blogflow.parsing import as_text
from blogflow.stages import AgentKind

_log = get_logger("llm")

Message = dict[str, str]

# reasoning → complex planning and judgement, fast → bulk generation
DEFAULT_MODELS: dict[str, dict[str, str]] = {
    "anthropic": {
        "reasoning": "claude-opus-4-1-20250805",
        "fast": "claude-sonnet-4-20250514",
    },
    "openai": {"reasoning": "gpt-4o", "fast": "gpt-4o-mini"},
    "gemini": {"reasoning": "gemini-2.5-pro", "fast": "gemini-2.0-flash"},
    "openrouter": {
        "reasoning": "anthropic/claude-opus-4.1",
        "fast": "anthropic/claude-sonnet-4",
    },
}

MODEL_TIERS: dict[AgentKind, str] = {
    AgentKind.PLANNER: "reasoning",
    AgentKind.ORCHESTRATOR: "reasoning",
    AgentKind.OUTLINE_WRITER: "reasoning",
    AgentKind.REVIEWER: "reasoning",
    AgentKind.BRAINSTORMER: "fast",
    AgentKind.CONTENT_WRITER: "fast",
}

_AUTH_STATUS = {401, 403}
_AUTH_ERROR_NAMES = {"AuthenticationError", "PermissionDeniedError"}


class Completion(Protocol):
    """What step handlers and the workflow manager need from a client."""

    def complete(
        self,
        messages: Sequence[Message] | str,
        *,
        agent_kind: AgentKind | None = None,
        max_output_tokens: int = 4000,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> str: ...

    def model_for(self, agent_kind: AgentKind | None) -> str: ...


# ── Helpers ───────────────────────────────────────────────────────────────────

def extract_text(response: Any) -> str:
    """Plain text from a provider reply, or raise :class:`CompletionError`.

    See :func:`blogflow.parsing.as_text` for the accepted shapes.
    """
    text = as_text(response)
    if not text.strip():
        raise CompletionError(
            f"Empty or unparseable completion response ({type(response).__name__})"
        )
    return text


def split_messages(messages: Sequence[Message] | str) -> tuple[str | None, list[Message]]:
    """Separate the optional system message from the conversation turns.

    Raises
    ------
    ValueError
        More than one system message, an unknown role, or no user/assistant
        turn at all.
    """
    if isinstance(messages, str):
        return None, [{"role": "user", "content": messages}]

    system: str | None = None
    turns: list[Message] = []
    for msg in messages:
        role = msg.get("role")
        if role == "system":
            if system is not None:
                raise ValueError("At most one system message is allowed")
            system = msg.get("content", "")
        elif role in ("user", "assistant"):
            turns.append({"role": role, "content": msg.get("content", "")})
        else:
            raise ValueError(f"Unknown message role: {role!r}")
    if not turns:
        raise ValueError("At least one user message is required")
    return system, turns


def is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, AuthenticationError):
        return True
    if getattr(exc, "status_code", None) in _AUTH_STATUS:
        return True
    return type(exc).__name__ in _AUTH_ERROR_NAMES


# ── Client ────────────────────────────────────────────────────────────────────

class CompletionClient:
    """Rate-limited, retrying LLM client with per-agent model selection.

    Parameters
    ----------
    provider :
        ``"anthropic"`` | ``"openai"`` | ``"gemini"`` | ``"openrouter"``.
        Defaults to ``$LLM_PROVIDER`` or ``"anthropic"``.
    models :
        Override the tier → model mapping, e.g. ``{"fast": "gpt-4o-mini"}``.
    max_retries :
        Attempts per call (``$LLM_MAX_RETRIES``, default 3).
    initial_wait, max_wait :
        Backoff start and ceiling in seconds (``$LLM_INITIAL_WAIT`` /
        ``$LLM_MAX_WAIT``).
    min_interval :
        Minimum seconds between consecutive calls (``$LLM_MIN_INTERVAL``).
    client :
        Pre-built SDK client.  Skips the API-key lookup; used by tests.
    sleep, clock :
        Injection points for ``time.sleep`` and ``time.monotonic``.

    Environment variables
    ---------------------
    LLM_MODEL                    Model for every tier and provider.
    LLM_MODEL_<PROVIDER>         Reasoning-tier model for one provider.
    LLM_MODEL_<PROVIDER>_FAST    Fast-tier model for one provider.
    <PROVIDER>_API_KEY           ANTHROPIC_API_KEY, OPENAI_API_KEY,
                                 GEMINI_API_KEY, OPENROUTER_API_KEY.

    Example
    -------
    >>> llm = CompletionClient("anthropic")
    >>> llm.complete(
    ...     [{"role": "system", "content": "You are terse."},
    ...      {"role": "user", "content": "Name one improv rule."}],
    ...     agent_kind=AgentKind.BRAINSTORMER, max_output_tokens=100,
    ... )
    'Yes, and.'
    """

    def __init__(
        self,
        provider: str | None = None,
        *,
        models: dict[str, str] | None = None,
        max_retries: int | None = None,
        initial_wait: float | None = None,
        max_wait: float | None = None,
        min_interval: float | None = None,
        client: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        if self.provider not in DEFAULT_MODELS:
            raise ValueError(
                f"Unknown provider '{self.provider}'. Valid: {sorted(DEFAULT_MODELS)}"
            )
        self.max_retries = max(1, max_retries if max_retries is not None
                               else int(os.environ.get("LLM_MAX_RETRIES", "3")))
        self.initial_wait = (initial_wait if initial_wait is not None
                             else float(os.environ.get("LLM_INITIAL_WAIT", "1")))
        self.max_wait = (max_wait if max_wait is not None
                         else float(os.environ.get("LLM_MAX_WAIT", "30")))
        self.min_interval = (min_interval if min_interval is not None
                             else float(os.environ.get("LLM_MIN_INTERVAL", "1")))
        self._models = self._resolve_models(self.provider, models or {})
        self._client = client
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None

        self._client_factories = {
            "openai": self._create_openai_client,
            "anthropic": self._create_anthropic_client,
            "gemini": self._create_gemini_client,
            "openrouter": self._create_openrouter_client,
        }
        self.usage: dict[str, dict[str, Any]] = {}

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "CompletionClient":
        """Build from a :class:`~blogflow.config.Settings` instance."""
        return cls(
            settings.provider,
            max_retries=settings.max_retries,
            initial_wait=settings.initial_wait,
            max_wait=settings.max_wait,
            min_interval=settings.min_interval,
            **kwargs,
        )

    # -- model selection -----------------------------------------------------

    @staticmethod
    def _resolve_models(provider: str, overrides: dict[str, str]) -> dict[str, str]:
        models = dict(DEFAULT_MODELS[provider])
        shared = os.environ.get("LLM_MODEL")
        if shared:
            models = {tier: shared for tier in models}
        env_key = f"LLM_MODEL_{provider.upper()}"
        if os.environ.get(env_key):
            models["reasoning"] = os.environ[env_key]
        if os.environ.get(f"{env_key}_FAST"):
            models["fast"] = os.environ[f"{env_key}_FAST"]
        models.update(overrides)
        return models

    def model_for(self, agent_kind: AgentKind | None) -> str:
        """Model id used for calls made on behalf of *agent_kind*."""
        tier = MODEL_TIERS.get(agent_kind, "fast") if agent_kind else "fast"
        return self._models[tier]

    # -- client factories ----------------------------------------------------

    @staticmethod
    def _api_key(name: str, provider: str) -> str:
        api_key = os.environ.get(name)
        if not api_key:
            raise AuthenticationError(f"{name} not set", provider=provider)
        return api_key

    def _create_openai_client(self):
        api_key = self._api_key("OPENAI_API_KEY", "openai")
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    def _create_anthropic_client(self):
        api_key = self._api_key("ANTHROPIC_API_KEY", "anthropic")
        from anthropic import Anthropic

        return Anthropic(api_key=api_key)

    def _create_gemini_client(self):
        api_key = self._api_key("GEMINI_API_KEY", "gemini")
        from google import genai

        return genai.Client(api_key=api_key)

    def _create_openrouter_client(self):
        api_key = self._api_key("OPENROUTER_API_KEY", "openrouter")
        from openai import OpenAI

        return OpenAI(base_url="https://openrouter.ai/api/v1", api_key=api_key)

    def _get_client(self):
        if self._client is None:
            self._client = self._client_factories[self.provider]()
        return self._client

    # -- public API ----------------------------------------------------------

    def complete(
        self,
        messages: Sequence[Message] | str,
        *,
        agent_kind: AgentKind | None = None,
        max_output_tokens: int = 4000,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> str:
        """Send *messages* and return the reply text.

        Parameters
        ----------
        messages :
            Role-tagged messages (at most one ``system``), or a bare prompt.
        agent_kind :
            Selects the model tier when *model* is not given.
        max_output_tokens, temperature :
            Generation budget for this call.
        model :
            Explicit model id, bypassing tier selection.

        Raises
        ------
        AuthenticationError
            Credential missing or rejected.  Not retried.
        CompletionError
            Every attempt failed; names the last underlying error.
        """
        system, turns = split_messages(messages)
        model = model or self.model_for(agent_kind)
        client = self._get_client()

        self._throttle()
        t0 = self._clock()
        wait_time = self.initial_wait
        last_exc: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            self._last_call = self._clock()
            try:
                raw = self._make_call(
                    client, model, system, turns, max_output_tokens, temperature
                )
                text = extract_text(raw)
            except Exception as exc:
                if is_auth_error(exc):
                    self._record(model, success=False, attempts=attempt, elapsed=0.0)
                    _log.error("llm auth failure provider=%s model=%s error=%s",
                               self.provider, model, exc)
                    if isinstance(exc, AuthenticationError):
                        raise
                    raise AuthenticationError(str(exc), provider=self.provider) from exc

                last_exc = exc
                _log.warning(
                    "llm retry provider=%s model=%s attempt=%d/%d error=%s",
                    self.provider, model, attempt, self.max_retries, exc,
                )
                if attempt < self.max_retries:
                    jitter = random.uniform(0.1, 0.3) * wait_time
                    self._sleep(wait_time + jitter)
                    wait_time = min(wait_time * 2, self.max_wait)
                continue

            elapsed = self._clock() - t0
            self._record(model, success=True, attempts=attempt, elapsed=elapsed)
            _log.info(
                "llm_call provider=%s model=%s agent=%s attempts=%d time=%.2fs chars=%d",
                self.provider, model, agent_kind.value if agent_kind else "-",
                attempt, elapsed, len(text),
            )
            return text

        self._record(model, success=False, attempts=self.max_retries,
                     elapsed=self._clock() - t0)
        raise CompletionError(
            f"Completion failed after {self.max_retries} attempts: {last_exc}",
            attempts=self.max_retries,
            last_error=last_exc,
        )

    def get_usage(self) -> dict[str, dict[str, Any]]:
        """Per-model call counts, failures and average call time."""
        return {
            name: {
                **stats,
                "avg_time": stats["total_time"] / max(stats["calls"], 1),
            }
            for name, stats in self.usage.items()
        }

    # -- internals -----------------------------------------------------------

    def _throttle(self) -> None:
        if self._last_call is None or self.min_interval <= 0:
            return
        remaining = self.min_interval - (self._clock() - self._last_call)
        if remaining > 0:
            _log.debug("rate limit wait %.2fs", remaining)
            self._sleep(remaining)

    def _make_call(
        self,
        client,
        model: str,
        system: str | None,
        turns: list[Message],
        max_tokens: int,
        temperature: float,
    ) -> Any:
        """Dispatch to the appropriate SDK method.  Returns the raw reply."""
        if self.provider in ("openai", "openrouter"):
            messages = ([{"role": "system", "content": system}] if system else []) + turns
            return client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )

        if self.provider == "anthropic":
            kwargs: dict[str, Any] = {}
            if system:
                kwargs["system"] = system
            return client.messages.create(
                model=model,
                messages=turns,
                max_tokens=max_tokens,
                temperature=temperature,
                **kwargs,
            )

        if self.provider == "gemini":
            contents = [
                {"role": "model" if t["role"] == "assistant" else "user",
                 "parts": [{"text": t["content"]}]}
                for t in turns
            ]
            config: dict[str, Any] = {
                "max_output_tokens": max_tokens,
                "temperature": temperature,
            }
            if system:
                config["system_instruction"] = system
            return client.models.generate_content(model=model, contents=contents, config=config)

        raise ValueError(f"Unknown provider: {self.provider}")

    def _record(self, model: str, *, success: bool, attempts: int, elapsed: float) -> None:
        stats = self.usage.setdefault(
            model, {"calls": 0, "failures": 0, "attempts": 0, "total_time": 0.0}
        )
        if success:
            stats["calls"] += 1
        else:
            stats["failures"] += 1
        stats["attempts"] += attempts
        stats["total_time"] += elapsed
