"""
Prompt building and response parsing for the chat completion hook.

Conversations are rendered as ``Author: text`` lines. The bot itself appears as
``{{Bot}}`` and bot status messages as ``{{System}}`` lines followed by
``| key=value`` parameter lines, so the model can refer back to images it
generated earlier. Everything here is pure; the handler does the I/O.
"""

from __future__ import annotations

import enum
import random
import re
from dataclasses import dataclass
from typing import Union

from core.app_config import TXT2IMG
from core.formatting import COMPLETED_TITLE, FAILED_TITLE, GENERATING_TITLE, WAITING_TITLE
from core.models import Checkpoint
from core.resolver import ImageRequest
from tg_client import ChatMessage

BOT_IDENTIFIER = "{{Bot}}"
SYSTEM_IDENTIFIER = "{{System}}"

FALLBACK_REPLY = "Give me a minute, I'm a bit confused right now..."

DEFAULT_PERSONA = (
    "You have been trained to be an AI companion with strong intellectual and emotional capabilities."
    " You think outside the box, do not like rigid world views, and are good at understanding people intuitively."
    " Your responses are articulate, light-hearted and supportive, sometimes poetic."
    " You are not afraid to question narrow ideas, but are also aware that your factual knowledge can sometimes be wrong."
    " You have no access to the internet."
)


class ActionChoice(enum.Enum):
    RESPOND = (
        "Send a simple response",
        "Respond to the last message casually.",
    )
    EXPLAIN = (
        "Send a response with a detailed explanation",
        "Respond to the last message by explaining the topic of interest to the best of your ability.",
    )
    INQUIRE = (
        "Send a response asking for more information",
        "Respond to the last message. Try to get more information about the topic.",
    )
    BRAINSTORM = (
        "Send a response brainstorming ideas as requested by the user",
        "Come up with some interesting ideas related to the topic. Be creative. Respond to the last message with your ideas.",
    )
    RECALL = (
        "Try to remember something that was previously discussed",
        "Search the entire conversation for the information that the last message is referring to."
        " Write a response containing your findings.",
    )
    GENERATE_IMAGE = (
        "Create or draw an image from scratch as requested by the user",
        "Respond to the last message. Inform the user that you are currently generating the image they requested.",
    )
    UPDATE_IMAGE = (
        "Iterate on a previously created image according to the user's request"
        " (e.g. retrying, resizing or parameter modification)",
        "Respond to the last message. Inform the user that you are currently updating"
        " the previously created image according to their request.",
    )

    def __init__(self, description: str, instruction: str) -> None:
        self.description = description
        self.instruction = instruction

    @property
    def generates_image(self) -> bool:
        return self in (ActionChoice.GENERATE_IMAGE, ActionChoice.UPDATE_IMAGE)


class ImageStatus(enum.Enum):
    WAITING = "waiting"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def status_message(self) -> str:
        if self is ImageStatus.SUCCESS:
            return f"{BOT_IDENTIFIER} generated an image"
        if self is ImageStatus.ERROR:
            return f"{BOT_IDENTIFIER} tried to generate an image, but failed"
        return f"{BOT_IDENTIFIER} is currently generating an image"


@dataclass(frozen=True)
class ChatImageParams:
    prompt: str | None = None
    negative_prompt: str | None = None
    width: int | None = None
    height: int | None = None
    checkpoint: str | None = None
    seed: int | None = None

    def format(self) -> str:
        lines: list[str] = []
        if self.prompt is not None:
            lines.append(f"prompt={self.prompt}")
        if self.negative_prompt is not None:
            lines.append(f"negativePrompt={self.negative_prompt}")
        if self.width is not None and self.height is not None:
            lines.append(f"size={self.width}x{self.height}")
        elif self.width is not None:
            lines.append(f"width={self.width}")
        elif self.height is not None:
            lines.append(f"height={self.height}")
        if self.checkpoint is not None:
            lines.append(f"checkpoint={self.checkpoint}")
        if self.seed is not None:
            lines.append(f"seed={self.seed}")
        return "\n".join(f"| {line}" for line in lines)


@dataclass(frozen=True)
class ChatLine:
    author: str
    content: str


@dataclass(frozen=True)
class ImageStatusLine:
    status: ImageStatus
    params: ChatImageParams | None = None


MessageInfo = Union[ChatLine, ImageStatusLine]


# ---------------------------------------------------------------------------
# Checkpoint names as the model sees them: "[Anime] Cute Mix" -> cute_mix / anime
# ---------------------------------------------------------------------------

_STYLE_RE = re.compile(r"\[(.*)] ")


def checkpoint_simple_name(checkpoint: Checkpoint) -> str:
    return _STYLE_RE.sub("", checkpoint.name).replace(" ", "_").lower()


def checkpoint_style(checkpoint: Checkpoint) -> str:
    match = _STYLE_RE.search(checkpoint.name)
    return match.group(1).lower() if match else "none"


def find_checkpoint(
    name: str,
    checkpoints: tuple[Checkpoint, ...],
    *,
    rng: random.Random | None = None,
) -> Checkpoint | None:
    """Match a simple name exactly, then by name part, then by style."""
    wanted = name.strip().lower()
    if not wanted:
        return None
    for item in checkpoints:
        if checkpoint_simple_name(item) == wanted:
            return item
    for item in checkpoints:
        if any(part and part in wanted for part in checkpoint_simple_name(item).split("_")):
            return item
    styled = [item for item in checkpoints if checkpoint_style(item) == wanted]
    if not styled:
        return None
    return (rng or random).choice(styled)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


def canonize(text: str) -> str:
    return text.replace("\n", "\n| ")


def resolve_identifiers(text: str, bot_name: str) -> str:
    return (
        text.replace("\n| ", "\n")
        .replace("\n|", "\n")
        .replace(f"@{BOT_IDENTIFIER}", bot_name)
        .replace(BOT_IDENTIFIER, bot_name)
    )


def format_message(info: MessageInfo) -> str:
    if isinstance(info, ChatLine):
        return f"{info.author}: {info.content}"
    content = f"{SYSTEM_IDENTIFIER}: {info.status.status_message}"
    if info.params is None:
        return content
    return f"{content}\n{info.params.format()}"


def format_messages(infos: list[MessageInfo]) -> str:
    return "\n".join(format_message(info) for info in infos)


_STATUS_TITLES = (
    (WAITING_TITLE, ImageStatus.WAITING),
    (GENERATING_TITLE, ImageStatus.GENERATING),
    (COMPLETED_TITLE, ImageStatus.SUCCESS),
    (FAILED_TITLE, ImageStatus.ERROR),
)
_STATUS_PARAM_RE = re.compile(r"^(.*?): (.*)$", re.MULTILINE)


def parse_status_message(text: str, checkpoints: tuple[Checkpoint, ...] = ()) -> ImageStatusLine | None:
    """Recover the status and parameters from a plain-text bot status message."""
    first_line = (text or "").strip().split("\n", 1)[0]
    status = next((s for title, s in _STATUS_TITLES if first_line.startswith(title)), None)
    if status is None:
        return None
    params = dict(_STATUS_PARAM_RE.findall(text))
    size = (params.get("Size") or "").split(" ")[0]
    width_raw, _, height_raw = size.partition("x")
    checkpoint_name = params.get("Checkpoint")
    checkpoint = next(
        (checkpoint_simple_name(item) for item in checkpoints if item.name == checkpoint_name),
        None,
    )
    return ImageStatusLine(
        status,
        ChatImageParams(
            prompt=params.get("Prompt"),
            negative_prompt=params.get("Negative prompt"),
            width=_opt_int(width_raw),
            height=_opt_int(height_raw),
            checkpoint=checkpoint,
            seed=_opt_int(params.get("Seed")),
        ),
    )


def _opt_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Step 1: choose an action
# ---------------------------------------------------------------------------

_ACTION_RE = re.compile("|".join(action.name for action in ActionChoice))


def action_choice_messages(infos: list[MessageInfo], bot_name: str) -> list[ChatMessage]:
    possible = "\n".join(f"  {action.name}: {action.description}" for action in ActionChoice)
    instruction = (
        f"{bot_name} is a bot that usually responds to users with text messages."
        f" But when explicitly asked to do so, {bot_name} can create an image instead."
        f" {bot_name} can also iterate on previously generated images when requested."
        f" Determine based on the conversation below which of the following actions {bot_name}"
        " should take in response to the last message in the conversation."
        "\n\nChoose one of the following possible actions:"
        f"\n{possible}"
    )
    return [
        ChatMessage("system", instruction),
        ChatMessage("user", format_messages(infos)),
        ChatMessage("assistant", "action="),
    ]


def parse_action(text: str) -> ActionChoice | None:
    match = _ACTION_RE.search(text or "")
    return ActionChoice[match.group(0)] if match else None


# ---------------------------------------------------------------------------
# Step 2: image parameters
# ---------------------------------------------------------------------------

_PARAM_SPLIT_RE = re.compile(r"\s+\|?\s*(.*?)\s*=\s*")
_PARAM_LINE_RE = re.compile(r'^(.*)="?\s*(.*?)\s*"?[.,]?\s*$', re.MULTILINE)
_CHAT_SIZE_RE = re.compile(r"(\d+)\s*[xX]\s*(\d+)")


def image_params_messages(
    infos: list[MessageInfo],
    bot_name: str,
    checkpoints: tuple[Checkpoint, ...],
) -> list[ChatMessage]:
    by_style: dict[str, list[str]] = {}
    for item in checkpoints:
        by_style.setdefault(checkpoint_style(item), []).append(checkpoint_simple_name(item))
    available = "\n".join(
        f"  {style}: {', '.join(names)}, {style}" for style, names in by_style.items()
    )
    instruction = (
        "Analyze the conversation below."
        f" Determine the parameters for the image {bot_name} should generate."
        " Specify the parameters in the format parameter=value."
        " Be as creative as necessary to fulfill the request."
        " If the user is asking for a particular style, try to select a matching checkpoint from the list."
        "\n\nAvailable parameters:"
        "\n  prompt: the description of the image (required)"
        "\n  negativePrompt: things to avoid in the image (optional)"
        "\n  size: the size of the image in pixels (optional)"
        "\n  checkpoint: the checkpoint to use (optional)"
        "\n  seed: the seed to use (optional)"
    )
    if available:
        instruction += f"\n\nAvailable checkpoints by style:\n{available}"
    return [
        ChatMessage("system", instruction),
        ChatMessage("user", format_messages(infos)),
        ChatMessage("assistant", "| prompt="),
    ]


def parse_image_params(
    text: str,
    checkpoints: tuple[Checkpoint, ...] = (),
    *,
    rng: random.Random | None = None,
) -> ChatImageParams:
    """Parse ``key=value`` lines produced by the model. A prompt is required."""
    content = text or ""
    if "prompt=" not in content:
        content = "prompt=" + content
    lines = _PARAM_SPLIT_RE.sub(lambda m: f"\n{m.group(1)}=", " " + content)
    values = {key.strip().lower(): value for key, value in _PARAM_LINE_RE.findall(lines)}
    prompt = values.get("prompt")
    if not prompt:
        raise ValueError("Prompt not found")

    width = height = None
    size_match = _CHAT_SIZE_RE.search(values.get("size", ""))
    if size_match:
        width, height = int(size_match.group(1)), int(size_match.group(2))
    width = _opt_dimension(values.get("width"), width)
    height = _opt_dimension(values.get("height"), height)

    checkpoint = None
    if values.get("checkpoint"):
        found = find_checkpoint(values["checkpoint"], checkpoints, rng=rng)
        checkpoint = checkpoint_simple_name(found) if found else None

    seed = _opt_int(values.get("seed"))
    return ChatImageParams(
        prompt=prompt,
        negative_prompt=values.get("negativeprompt") or None,
        width=width,
        height=height,
        checkpoint=checkpoint,
        seed=abs(seed) if seed is not None else None,
    )


def _opt_dimension(raw: str | None, fallback: int | None) -> int | None:
    if raw is None:
        return fallback
    try:
        return abs(round(float(raw)))
    except ValueError:
        return fallback


def image_request_from_chat(
    params: ChatImageParams,
    checkpoints: tuple[Checkpoint, ...],
    bot_name: str,
) -> ImageRequest:
    checkpoint = find_checkpoint(params.checkpoint, checkpoints) if params.checkpoint else None
    return ImageRequest(
        command=TXT2IMG,
        prompt=resolve_identifiers(params.prompt, bot_name) if params.prompt else None,
        negative_prompt=(
            resolve_identifiers(params.negative_prompt, bot_name) if params.negative_prompt else None
        ),
        width=params.width,
        height=params.height,
        seed=params.seed,
        checkpoint=checkpoint.id if checkpoint else None,
    )


# ---------------------------------------------------------------------------
# Step 3: the reply
# ---------------------------------------------------------------------------


def reply_messages(
    infos: list[MessageInfo],
    bot_name: str,
    action: ActionChoice,
    params: ChatImageParams | None,
    *,
    persona: str = DEFAULT_PERSONA,
) -> list[ChatMessage]:
    transcript = list(infos)
    if action.generates_image:
        status = ImageStatus.WAITING if params is not None else ImageStatus.ERROR
        transcript.append(ImageStatusLine(status, params))
    instruction = (
        f"You are a chatbot called {bot_name}. {persona}"
        f"\n\n{action.instruction}"
        " Your response should align with your traits and motivations."
        " Keep your response short. Keep the conversation going."
    )
    return [
        ChatMessage("system", instruction),
        ChatMessage("user", format_messages(transcript)),
        ChatMessage("assistant", f"{BOT_IDENTIFIER}: "),
    ]


def clean_reply(text: str) -> str:
    reply = (text or "").strip()
    if reply.startswith(f"{BOT_IDENTIFIER}:"):
        reply = reply[len(BOT_IDENTIFIER) + 1 :]
    return reply.strip()
