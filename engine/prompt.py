"""Prompt compositor: turns five role prompts into one image instruction."""

from collections.abc import Mapping

from models.session import ROLE_ORDER, Role

PREAMBLE = """You are a master image compositor. Apply each stage below in order, building on the result of the previous stage without overwriting it.

Face preservation:
- Keep the face from the goal image (eyes, nose, mouth, facial structure, skin tone, expression) recognizable in every stage.
- Blend the face into the new scene with matching light and shadow so it never looks cut out or pasted on.
- Apply every player description around the preserved face.

Orientation:
- The output MUST be a vertical portrait image, height greater than width (about 9:16).
- Never produce a landscape image."""

STAGES: dict[Role, tuple[str, str]] = {
    Role.HEAD: (
        "Stage 1 - Head",
        "Keep the goal face and add these head details around it (hair, hats, glasses, makeup), "
        "with natural shadows where they meet the face:",
    ),
    Role.TORSO: (
        "Stage 2 - Torso & Arms",
        "Build the upper body, clothing, accessories and hand-held objects, blending the neck "
        "and shoulders into the preserved face:",
    ),
    Role.LEGS: (
        "Stage 3 - Legs & Lower Body",
        "Design the lower body, legs and footwear with lighting consistent with the upper body:",
    ),
    Role.POSE: (
        "Stage 4 - Pose",
        "Pose the whole figure upright for a vertical frame, keeping the face recognizable:",
    ),
    Role.BACKGROUND: (
        "Stage 5 - Background",
        "Place the subject in this environment and relight the subject to match it:",
    ),
}

RENDERING = """Rendering requirements:
- Ultra-realistic, photorealistic full-body portrait, head to toe visible, vertical orientation (height > width).
- Cinematic lighting, high dynamic range, physically accurate materials.
- Unified lighting, natural shadow transitions and consistent colour across face, body and background.
- The result must read as one naturally captured photograph with the goal image's face preserved."""


def build_five_stage_prompt(prompts: Mapping[Role, str | None]) -> str:
    """Compose the instruction sent to the image provider.

    Pure and deterministic: the same five inputs always give the same text,
    and each input appears verbatim, in role order, under its stage label.

    Args:
        prompts: Role -> player text. Missing or None roles become "".

    Returns:
        The full instruction string.
    """
    sections = [PREAMBLE]
    for role in ROLE_ORDER:
        label, directive = STAGES[role]
        text = prompts.get(role) or ""
        sections.append(f"{label}:\n- {directive} {text}")
    sections.append(RENDERING)
    return "\n\n".join(sections)
