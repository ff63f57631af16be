"""Image attachment for chat2edit replies.

When the instruction asks for an image, a prompt is derived from the target
document, an image is generated through the gateway (with a keyless
Pollinations fallback), stored in object storage and attached either to the
target post's media list or as a new photos document.
"""

import asyncio
import base64
import json
import random
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
from langchain_core.messages import HumanMessage, SystemMessage

from board_engine.core.config import Settings, get_settings
from board_engine.core.llm import ModelConfig, get_llm
from board_engine.core.logging import get_logger
from board_engine.core.model_invoker import extract_chunk_text
from board_engine.core.schemas_chat2edit import BoardDocument, EditProposal
from board_engine.core.text import is_chinese_text
from board_engine.db.storage import upload_public_bytes

logger = get_logger(__name__)

POLLINATIONS_URL = "https://image.pollinations.ai/prompt/{prompt}"
FETCH_TIMEOUT_SECONDS = 25.0
PROMPT_TIMEOUT_SECONDS = 30.0
POST_IMAGE_SIZE = (1080, 1440)
SQUARE_IMAGE_SIZE = (1024, 1024)
PHOTOS_DOC_TYPE = "photos;folder=0;parent="

NO_IMAGE_RE = re.compile(r"不需要图|不要图|不用图|不想要图|不要图片|不需要图片")
WANTS_IMAGE_RE = re.compile(r"配图|图片|图像|插图|画一|画个|配个图|生成图|生成图片|生成一张|封面图|配张|画张")
WANTS_IMAGE_EN_RE = re.compile(r"image|illustration|draw|drawing|cover|thumbnail")
DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)

DISCLAIMER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"我是一?个?文档编辑器[^。]*?(无法|不能)[^。]*?(绘制|画|生成)[^。]*(图像|图片)[^。]*。?",
        r"我是一?个?文本编辑器[^。]*?(无法|不能)[^。]*?(绘制|画|生成)[^。]*(图像|图片)[^。]*。?",
        r"作为一个?文档编辑器[^。]*?(无法|不能)[^。]*?(绘制|画|生成)[^。]*(图像|图片)[^。]*。?",
        r"作为一个?文本编辑器[^。]*?(无法|不能)[^。]*?(绘制|画|生成)[^。]*(图像|图片)[^。]*。?",
        r"我只能处理文本[^。]*?(无法|不能)[^。]*?(生成|创建)[^。]*(图像|图片)[^。]*。?",
        r"作为一个?文本模型[^。]*?(无法|不能)[^。]*?(绘制|画|生成)[^。]*(图像|图片)[^。]*。?",
        r"cannot\s+(draw|generate)\s+(images?|pictures?)[^.]*\.?",
        r"can(?:not|'t)\s+create\s+(images?|pictures?)[^.]*\.?",
    )
]

IMAGE_PROMPT_SYSTEM = (
    "You generate concise English prompts for image generation. "
    "Keep it under 30 words. "
    "Describe subject, style, lighting, composition, and mood. "
    "No text overlays, no watermarks, no logos."
)
XHS_IMAGE_PROMPT_SYSTEM = (
    "Convert the following Xiaohongshu design brief into a concise English image prompt. "
    "Keep it under 40 words. "
    "Emphasize 3:4 vertical layout, clean typography, and cohesive styling. "
    "No text overlays, no watermarks, no logos."
)


@dataclass
class MediaResult:
    """Outcome of an attachment attempt; ``note`` is appended to the reply.

    ``new_documents`` must always be created as fresh documents, never merged
    into a loaded one.
    """

    docs: list[BoardDocument]
    new_documents: list[EditProposal] = field(default_factory=list)
    note: str | None = None
    attached: bool = False


def wants_image(message: str | None) -> bool:
    raw = (message or "").strip()
    if not raw or NO_IMAGE_RE.search(raw):
        return False
    if WANTS_IMAGE_RE.search(raw):
        return True
    return bool(WANTS_IMAGE_EN_RE.search(raw.lower()))


def is_post_type(kind: str | None) -> bool:
    return "post" in (kind or "").lower()


def is_xhs_request(*parts: str | None) -> bool:
    raw = " ".join(p for p in parts if p)
    if "小红书" in raw:
        return True
    lower = raw.lower()
    return "xiaohongshu" in lower or bool(re.search(r"\bxhs\b", lower))


def sanitize_image_disclaimers(message: str, reply: str) -> str:
    """Strip "cannot generate images" disclaimers when an image was requested."""
    if not wants_image(message) or not (reply or "").strip():
        return reply
    cleaned = reply
    for pattern in DISCLAIMER_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return re.sub(r"\n{3,}", "\n\n", cleaned).strip()


def failure_note(message: str, to_post: bool) -> str:
    """Localized note for a failed attachment."""
    chinese = is_chinese_text(message)
    if to_post:
        return "配图生成失败，已保留文本内容。" if chinese else "Image generation failed; text content was preserved."
    return "图片生成失败，请稍后重试。" if chinese else "Image generation failed. Please try again."


def apply_image_to_post_content(content: str | None, url: str) -> str:
    """Add ``url`` to a post's JSON media list and mark it as an image post."""
    try:
        base = json.loads(content or "")
        if not isinstance(base, dict):
            raise ValueError("post content is not an object")
    except ValueError:
        base = {"text": content or "", "platform": None, "account": None, "media": [], "postType": "纯文字"}

    media = [m for m in (base.get("media") or []) if isinstance(m, dict)]
    seen = {str(m.get("url") or "").strip() for m in media}
    if url not in seen:
        media.append({"id": str(uuid.uuid4()), "kind": "image", "url": url})
    return json.dumps({**base, "media": media, "postType": "图文"}, ensure_ascii=False)


def _ext_for_content_type(content_type: str) -> str:
    ct = (content_type or "").lower()
    if "png" in ct:
        return "png"
    if "webp" in ct:
        return "webp"
    return "jpg"


def _content_type_for_ext(ext: str) -> str:
    return {"png": "image/png", "webp": "image/webp"}.get(ext, "image/jpeg")


# =========================
# Generation
# =========================


async def generate_image_prompt(
    model_config: ModelConfig | None,
    message: str,
    title: str,
    content: str,
    prefer_xhs: bool = False,
) -> str:
    """Ask the image model for a short prompt; falls back to the raw inputs."""
    fallback = f"{message}\n{title}\n{content}".strip()[:400]
    if model_config is None:
        return fallback

    system = XHS_IMAGE_PROMPT_SYSTEM if prefer_xhs else IMAGE_PROMPT_SYSTEM
    user = "\n".join(
        line for line in (f"Instruction: {message}", f"Title: {title}", f"Content: {content[:600]}") if line
    )
    try:
        llm = get_llm(model_config, streaming=False)
        response = await asyncio.wait_for(
            llm.ainvoke([SystemMessage(content=system), HumanMessage(content=user)]),
            timeout=PROMPT_TIMEOUT_SECONDS,
        )
        text = extract_chunk_text(response).strip()
        if text:
            return text
    except Exception as e:
        logger.warning(f"Image prompt generation failed, using fallback: {e}")
    return fallback


async def _fetch_url(client: httpx.AsyncClient, url: str) -> tuple[bytes, str]:
    response = await client.get(url, timeout=FETCH_TIMEOUT_SECONDS, follow_redirects=True)
    if response.status_code >= 400:
        raise RuntimeError(f"Image fetch failed ({response.status_code})")
    return response.content, _ext_for_content_type(response.headers.get("content-type", ""))


async def _generate_via_gateway(
    client: httpx.AsyncClient,
    prompt: str,
    size: tuple[int, int],
    model_id: str,
    api_key: str,
    base_url: str,
) -> tuple[bytes, str]:
    w, h = size
    aspect = "1:1" if w == h else ("3:4" if h > w else "4:3")
    response = await client.post(
        f"{base_url.rstrip('/')}/chat/completions",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={
            "model": model_id,
            "messages": [{"role": "user", "content": prompt}],
            "modalities": ["image", "text"],
            "image_config": {"aspect_ratio": aspect},
        },
        timeout=FETCH_TIMEOUT_SECONDS,
    )
    if response.status_code >= 400:
        raise RuntimeError(f"Image generation failed ({response.status_code})")

    data = response.json()
    try:
        url = data["choices"][0]["message"]["images"][0]["image_url"]["url"]
    except (KeyError, IndexError, TypeError):
        url = None
    if not url:
        raise RuntimeError("No image returned from model")

    match = DATA_URL_RE.match(str(url))
    if match:
        return base64.b64decode(match.group(2)), _ext_for_content_type(match.group(1))
    if str(url).startswith("data:"):
        raise RuntimeError("Invalid data URL")
    return await _fetch_url(client, str(url))


async def fetch_image(prompt: str, size: tuple[int, int], settings: Settings | None = None) -> tuple[bytes, str]:
    """
    Generate an image, returning (bytes, extension).

    Raises:
        RuntimeError / httpx.HTTPError: When both the gateway and the fallback fail
    """
    settings = settings or get_settings()
    async with httpx.AsyncClient() as client:
        if settings.OPENROUTER_API_KEY:
            try:
                return await _generate_via_gateway(
                    client,
                    prompt,
                    size,
                    settings.IMAGE_MODEL_ID,
                    settings.OPENROUTER_API_KEY,
                    settings.OPENROUTER_BASE_URL,
                )
            except (RuntimeError, httpx.HTTPError, ValueError) as e:
                logger.warning(f"Gateway image generation failed, falling back to Pollinations: {e}")

        w, h = size
        url = POLLINATIONS_URL.format(prompt=quote(prompt, safe=""))
        return await _fetch_url(client, f"{url}?width={w}&height={h}&seed={random.randint(0, 99999)}")


def upload_image(supabase: Any, key: str, data: bytes, ext: str, settings: Settings | None = None) -> str:
    """Upload to the media bucket, retrying the fallback bucket when the first is missing."""
    settings = settings or get_settings()
    content_type = _content_type_for_ext(ext)
    try:
        return upload_public_bytes(supabase, settings.MEDIA_BUCKET, key, data, content_type)
    except Exception as e:
        text = str(e).lower()
        if "bucket" not in text and "not found" not in text:
            raise
        logger.warning(f"Bucket {settings.MEDIA_BUCKET} unavailable, using {settings.MEDIA_FALLBACK_BUCKET}")
        return upload_public_bytes(supabase, settings.MEDIA_FALLBACK_BUCKET, key, data, content_type)


# =========================
# Attachment
# =========================


def _pick_target(written: list[BoardDocument]) -> tuple[int, bool]:
    """Index of the first post row, else 0 (or -1 with no rows); and whether it is a post."""
    for i, doc in enumerate(written):
        if is_post_type(doc.type):
            return i, True
    return (0 if written else -1), False


async def attach_image(
    supabase: Any,
    user_id: str,
    message: str,
    written: list[BoardDocument],
    image_model: ModelConfig | None,
    settings: Settings | None = None,
) -> MediaResult:
    """
    Attach a generated image to the request's edits.

    ``written`` are the reconciled rows, whose types already fall back to
    the stored document type.
    Failures never raise: the text edits stay as they are and a localized
    note explains what happened.

    Returns:
        MediaResult whose ``docs`` are the rows to persist (unchanged when
        nothing was attached)
    """
    settings = settings or get_settings()
    if not wants_image(message):
        return MediaResult(docs=written)

    chinese = is_chinese_text(message)
    index, to_post = _pick_target(written)
    target = written[index] if index >= 0 else None

    title = (target.title if target else "") or ""
    content = (target.content if target else "") or ""
    prompt = await generate_image_prompt(
        image_model,
        message,
        title.strip(),
        content.strip(),
        prefer_xhs=to_post and is_xhs_request(message, target.type if target else None, title, content),
    )
    if not prompt:
        return MediaResult(docs=written)

    try:
        data, ext = await asyncio.wait_for(
            fetch_image(prompt, POST_IMAGE_SIZE if to_post else SQUARE_IMAGE_SIZE, settings),
            timeout=settings.IMAGE_TIMEOUT_SECONDS,
        )
        key = f"{user_id}/generated/{target.id if target else 'new'}/{int(time.time() * 1000)}-{uuid.uuid4()}.{ext}"
        url = await asyncio.to_thread(upload_image, supabase, key, data, ext, settings)
    except Exception as e:
        logger.warning(f"Image attachment failed: {e}")
        return MediaResult(docs=written, note=failure_note(message, to_post))

    if to_post and target is not None:
        updated = target.model_copy(update={"content": apply_image_to_post_content(target.content, url)})
        docs_out = [updated if i == index else d for i, d in enumerate(written)]
        note = "已将配图写入文档。" if chinese else "Added the image to the document."
        return MediaResult(docs=docs_out, note=note, attached=True)

    photo = EditProposal(
        target_title="生成图片" if chinese else "Generated Image",
        content=f'<p><img src="{url}" /></p>',
        kind=PHOTOS_DOC_TYPE,
    )
    return MediaResult(docs=written, new_documents=[photo], note=f"![Image]({url})", attached=True)
