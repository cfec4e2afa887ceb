import hashlib
import json
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, BadRequestError, OpenAIError, RateLimitError
import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, OPENAI_VISION_MODEL, REDIS_URL

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60 * 60 * 12  # 12h

# Sampling used for every advice generation call.
CHAT_PARAMS = {"temperature": 0.7, "top_p": 0.9, "max_tokens": 400}

CAPTION_PROMPT = (
    "Describe this receipt in one or two sentences. Mention the store or merchant name, "
    "the total amount paid with its currency and the date if they are visible."
)

CLASSIFY_SYSTEM = """You are a zero-shot text classifier for personal finance transactions.
Score how well the text fits each candidate label. Scores are between 0 and 1 and sum to 1.
Return strictly a JSON object of the form {"scores": {"<label>": <score>, ...}} using only the given labels.
"""


class InferenceError(Exception):
    """The hosted model could not produce an answer."""


def as_image_url(image: str) -> str:
    """Accept an http(s) URL, a data URI or bare base64 and return something the API accepts."""
    image = image.strip()
    if image.startswith(("http://", "https://", "data:")):
        return image
    return f"data:image/jpeg;base64,{image}"


def _cache_key(text: str, labels: Sequence[str]) -> str:
    h = hashlib.sha1(f"{text}|{','.join(labels)}".encode("utf-8")).hexdigest()
    return f"zsc_v1:{h}"


class InferenceClient:
    """Thin async wrapper over an OpenAI-compatible hosted model API.

    Every method raises InferenceError on failure; callers decide how to
    degrade.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, cache: Optional[redis.Redis] = None,
                 model: str = OPENAI_MODEL, vision_model: str = OPENAI_VISION_MODEL):
        self._client = client
        self._cache = cache
        self.model = model
        self.vision_model = vision_model

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise InferenceError("OPENAI_API_KEY missing; inference is unavailable.")
        return self._client

    async def _complete(self, model: str, messages: List[Dict], **params) -> str:
        client = self._require_client()
        try:
            resp = await client.chat.completions.create(model=model, messages=messages, **params)
        except (APIConnectionError, APITimeoutError) as e:
            raise InferenceError("Inference connection/timeout error.") from e
        except RateLimitError as e:
            raise InferenceError("Rate limited by inference provider.") from e
        except BadRequestError as e:
            raise InferenceError(f"Inference BadRequest: {e}") from e
        except OpenAIError as e:
            raise InferenceError(f"Inference error: {e}") from e
        try:
            return (resp.choices[0].message.content or "").strip()
        except (AttributeError, IndexError) as e:
            raise InferenceError(f"No choices/message in response: {e}") from e

    async def _image_prompt(self, image: str, prompt: str) -> str:
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": as_image_url(image)}},
            ],
        }]
        return await self._complete(self.vision_model, messages, temperature=0)

    async def ask_image(self, image: str, question: str) -> str:
        """Document question answering over a receipt image."""
        prompt = f"{question}\nAnswer with the value only. If it is not visible, answer with nothing."
        return await self._image_prompt(image, prompt)

    async def caption_image(self, image: str) -> str:
        return await self._image_prompt(image, CAPTION_PROMPT)

    async def _get_cache(self, key: str) -> Optional[List[Tuple[str, float]]]:
        if not self._cache:
            return None
        try:
            raw = await self._cache.get(key)
        except RedisError as e:
            logger.warning("classifier cache read failed: %s", e)
            return None
        if not raw:
            return None
        try:
            return [(str(label), float(score)) for label, score in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.warning("ignoring unreadable classifier cache entry %s: %s", key, e)
            return None

    async def _set_cache(self, key: str, value: List[Tuple[str, float]]) -> None:
        if not self._cache:
            return
        try:
            await self._cache.setex(key, CACHE_TTL_SECONDS, json.dumps(value))
        except RedisError as e:
            logger.warning("classifier cache write failed: %s", e)

    async def classify(self, text: str, labels: Sequence[str]) -> List[Tuple[str, float]]:
        """Zero-shot classification. Returns (label, score) pairs, best first."""
        key = _cache_key(text, labels)
        cached = await self._get_cache(key)
        if cached:
            return cached

        messages = [
            {"role": "system", "content": CLASSIFY_SYSTEM},
            {"role": "user", "content": f"Text: {text}\nCandidate labels: {', '.join(labels)}"},
        ]
        content = await self._complete(self.model, messages, temperature=0,
                                       response_format={"type": "json_object"})
        try:
            scores = json.loads(content)["scores"]
            ranked = [(label, float(scores.get(label, 0.0))) for label in labels]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InferenceError(f"Unparseable classifier output: {e}") from e

        ranked.sort(key=lambda pair: pair[1], reverse=True)
        await self._set_cache(key, ranked)
        return ranked

    async def chat_stream(self, messages: List[Dict], **params) -> AsyncIterator[str]:
        client = self._require_client()
        try:
            stream = await client.chat.completions.create(
                model=self.model, messages=messages, stream=True, **params
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except OpenAIError as e:
            raise InferenceError(f"Streaming generation failed: {e}") from e

    async def chat(self, messages: List[Dict], **params) -> str:
        return await self._complete(self.model, messages, **params)

    async def generate(self, messages: List[Dict]) -> str:
        """Streaming generation with a single non-streaming retry."""
        try:
            chunks = [piece async for piece in self.chat_stream(messages, **CHAT_PARAMS)]
            text = "".join(chunks).strip()
            if text:
                return text
            logger.warning("streaming generation returned no text; retrying without streaming")
        except InferenceError as e:
            logger.warning("streaming generation failed (%s); retrying without streaming", e)
        text = await self.chat(messages, **CHAT_PARAMS)
        if not text:
            raise InferenceError("Model returned an empty answer.")
        return text


_client: Optional[InferenceClient] = None


def get_inference_client() -> InferenceClient:
    """FastAPI dependency returning the process-wide inference client."""
    global _client
    if _client is None:
        openai_client = AsyncOpenAI(api_key=OPENAI_API_KEY, base_url=OPENAI_BASE_URL) if OPENAI_API_KEY else None
        cache = redis.Redis.from_url(REDIS_URL, socket_connect_timeout=0.2) if REDIS_URL else None
        _client = InferenceClient(openai_client, cache)
    return _client
