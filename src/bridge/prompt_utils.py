from __future__ import annotations

from pathlib import Path

import structlog

from src.bridge.config import Config
from src.bridge.tags import format_tag, route_codes, END_CALL_CODE, MESSAGE_CODE

logger = structlog.get_logger(__name__)

_DEFAULT_MAX_PROMPT_CHARS = 40_000

_DEFAULT_INSTRUCTIONS = (
    "You are {AGENT_NAME}, the receptionist for {COMPANY_NAME}. Be brief, friendly, and efficient. "
    "Collect: caller name, callback number, property address or reference ID, the type of service "
    "they need, and their desired timeline. "
    "If the matter seems urgent or unclear, offer a transfer to a human. "
    "Speak clearly, one idea per sentence, and pause for the caller."
)

_DEFAULT_GREETING = (
    "Greet the caller: thank them for calling {COMPANY_NAME}, say you are {AGENT_NAME}, "
    "and ask how you can help today."
)


def _repo_root() -> Path:
    # src/bridge/prompt_utils.py -> repo root is ../../
    return Path(__file__).resolve().parents[2]


def _read_text_file(path: str, *, max_chars: int) -> str:
    if not path:
        return ""

    file_path = Path(path)
    if not file_path.is_absolute():
        file_path = _repo_root() / file_path

    try:
        content = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("Prompt file not found", path=str(file_path))
        return ""
    except UnicodeDecodeError:
        try:
            content = file_path.read_text(encoding="utf-8-sig")
        except Exception:
            logger.warning("Prompt file decode failed", path=str(file_path))
            return ""
    except Exception:
        logger.exception("Prompt file read failed", path=str(file_path))
        return ""

    content = content.strip()
    if not content:
        return ""

    if len(content) > max_chars:
        logger.warning("Prompt truncated (too long)", path=str(file_path), max_chars=max_chars)
        content = content[:max_chars]

    return content


def _apply_placeholders(prompt: str, config: Config) -> str:
    if not prompt:
        return ""

    replacements = {
        "{AGENT_NAME}": config.agent_name,
        "{COMPANY_NAME}": config.company_name,
        "{agent_name}": config.agent_name,
        "{company_name}": config.company_name,
    }
    for key, value in replacements.items():
        prompt = prompt.replace(key, value)

    return prompt


def resolve_prompt(
    *,
    config: Config,
    inline_text: str,
    file_path: str,
    max_chars: int = _DEFAULT_MAX_PROMPT_CHARS,
) -> str:
    """
    Resolve a prompt from (1) inline text, else (2) file path, else "".

    - Applies simple placeholder substitution.
    - Truncates large prompts for safety.
    """
    prompt = (inline_text or "").strip()
    if not prompt:
        prompt = _read_text_file(file_path, max_chars=max_chars)

    return _apply_placeholders(prompt, config)


def routing_directive(config: Config) -> str:
    destinations = [code for code in route_codes(config.route_destinations) if code not in (MESSAGE_CODE, END_CALL_CODE)]
    return (
        "When the caller should be routed, include exactly one tag in your text output (never say it aloud): "
        + ", ".join(format_tag(code) for code in destinations)
        + f" to transfer to that person, {format_tag(MESSAGE_CODE)} to take a message, "
        + f"or {format_tag(END_CALL_CODE)} to end the call."
    )


def build_session_instructions(
    config: Config,
    *,
    max_chars: int = _DEFAULT_MAX_PROMPT_CHARS,
) -> str:
    """
    Assemble the session instructions: base prompt, optional knowledge text
    (capped at `knowledge_max_chars`) and the routing tag directive.
    """
    base = resolve_prompt(
        config=config,
        inline_text=config.openai_realtime_instructions,
        file_path=config.openai_realtime_instructions_file,
        max_chars=max_chars,
    ) or _apply_placeholders(_DEFAULT_INSTRUCTIONS, config)

    sections = [base]

    knowledge = _read_text_file(config.knowledge_file, max_chars=max(0, config.knowledge_max_chars))
    if knowledge:
        sections.append("Reference information:\n" + knowledge)

    if config.openai_realtime_text_output:
        sections.append(routing_directive(config))

    instructions = "\n\n".join(sections)
    if len(instructions) > max_chars:
        logger.warning("Session instructions truncated", max_chars=max_chars)
        instructions = instructions[:max_chars]
    return instructions


def build_greeting_instructions(config: Config) -> str:
    greeting = (config.openai_realtime_greeting or "").strip() or _DEFAULT_GREETING
    return _apply_placeholders(greeting, config)
