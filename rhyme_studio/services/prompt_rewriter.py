import logging

import httpx

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.schemas.storyboard import RewritePromptRequest
from rhyme_studio.services.openai_chat import create_chat_completion

logger = logging.getLogger(__name__)

REWRITE_SYSTEM_PROMPT = """You are an expert prompt engineer for AI image and video generation. Your task is to rewrite prompts based on user feedback while maintaining the core scene intent.

Guidelines:
- Keep the same overall scene structure and characters
- Apply the user's feedback to improve the prompt
- For image prompts: Focus on visual details, composition, lighting, style
- For animation prompts: Focus on motion, camera movement, pacing
- Be concise but descriptive
- Output ONLY the rewritten prompt, no explanations"""

PROMPT_TYPE_LABELS = {
    "image": "Image Generation",
    "animation": "Animation/Video",
}


def build_rewrite_message(request: RewritePromptRequest) -> str:
    return f"""Prompt Type: {PROMPT_TYPE_LABELS[request.prompt_type]}

Scene Description: {request.scene_description}

Current Prompt:
{request.current_prompt}

User Feedback:
{request.feedback}

Rewrite the prompt incorporating the feedback:"""


async def rewrite_prompt(
    request: RewritePromptRequest,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Rewrite an image or animation prompt from user feedback."""
    settings = settings or get_settings()
    logger.info(f"Rewriting {request.prompt_type} prompt with feedback: {request.feedback}")

    completion = await create_chat_completion(
        [
            {"role": "system", "content": REWRITE_SYSTEM_PROMPT},
            {"role": "user", "content": build_rewrite_message(request)},
        ],
        model=settings.rewrite_model,
        temperature=0.7,
        max_tokens=500,
        settings=settings,
        transport=transport,
    )
    rewritten = completion.content.strip()
    logger.info(f"Rewritten prompt: {rewritten[:100]}...")
    return rewritten
