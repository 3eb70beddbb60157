"""Subject-replacement prompts for portrait variations.

The reference portrait is the first image sent to the model and the
customer's pet photo the second. Everything about the reference (background,
composition, lighting, medium, pose, aspect ratio) is preserved; only the
subject's appearance is taken from the pet photo.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PRESERVATION = "\n".join(
    [
        "- The EXACT background from the reference image",
        "- The EXACT composition, framing, and camera angle",
        "- The EXACT lighting setup, shadows, and highlights",
        "- The EXACT props, objects, and scenic elements",
        "- The EXACT color palette and mood",
        "- The EXACT artistic style, brushwork, and texture",
        "- The EXACT position and pose of the subject",
    ]
)

POSE_RULES = "\n".join(
    [
        "- The new subject MUST adopt the EXACT SAME POSE as the subject in the reference image",
        "- Match the head tilt, ear position, leg placement, and body orientation",
        "- The new subject must occupy the SAME SPATIAL POSITION in the frame",
        "- The uploaded photo is ONLY for the pet's physical appearance, never for pose or background",
    ]
)

STYLE_RULES = "\n".join(
    [
        "- Render the new subject in the EXACT SAME artistic medium as the reference",
        "- Oil painting references get visible brushstrokes; watercolor gets soft edges and bleeds",
        "- Photographic references are rendered photographically",
        "- Match the lighting, shadows, and highlights of the reference portrait",
    ]
)


@dataclass
class PetCharacteristics:
    """Traits detected from the customer's pet photo."""

    pose: Optional[str] = None
    gaze: Optional[str] = None
    expression: Optional[str] = None
    detected_breed: Optional[str] = None
    detected_coat: Optional[str] = None


@dataclass
class VariationPromptOptions:
    composition_template: Optional[str] = None
    aspect_ratio: Optional[str] = None
    size_instruction: Optional[str] = None
    breed_name: Optional[str] = None
    theme_name: Optional[str] = None
    style_name: Optional[str] = None
    format_name: Optional[str] = None
    pet_characteristics: Optional[PetCharacteristics] = field(default=None)


def orientation_for(aspect_ratio: Optional[str]) -> Optional[str]:
    """``"16:9"`` -> LANDSCAPE, ``"2:3"`` -> PORTRAIT, ``"1:1"`` -> SQUARE."""
    if not aspect_ratio:
        return None
    try:
        width, height = (float(part) for part in aspect_ratio.split(":", 1))
    except ValueError:
        return None
    if width > height:
        return "LANDSCAPE"
    if height > width:
        return "PORTRAIT"
    return "SQUARE"


class VariationPromptBuilder:
    def build_subject_replacement_prompt(self, options: VariationPromptOptions) -> str:
        sections = [
            "CRITICAL INSTRUCTION: MODIFY THE REFERENCE IMAGE, DO NOT CREATE A NEW IMAGE",
        ]

        aspect_block = self._aspect_ratio_block(options.aspect_ratio)
        if aspect_block:
            sections.append(aspect_block)

        sections.append(
            "You are given TWO images:\n"
            "1. REFERENCE IMAGE (FIRST IMAGE): the composition, background, style, "
            "lighting and aspect ratio to preserve\n"
            "2. SUBJECT PHOTO (SECOND IMAGE): ONLY use this for the pet's physical "
            "appearance (coloring, markings, facial features)\n\n"
            "MODIFY the REFERENCE IMAGE by REPLACING ONLY the subject with the pet "
            "from the SUBJECT PHOTO."
        )
        sections.append(
            "PRESERVATION REQUIREMENTS (THESE MUST REMAIN IDENTICAL):\n"
            + (options.composition_template or DEFAULT_PRESERVATION)
        )

        replacement = self._replacement_block(options.pet_characteristics)
        if options.size_instruction:
            replacement = f"{replacement}\n\n{options.size_instruction}"
        sections.append(
            "REPLACEMENT REQUIREMENT (ONLY THIS CHANGES):\n" + replacement
        )
        sections.append("CRITICAL POSE AND POSITION TRANSFORMATION:\n" + POSE_RULES)
        sections.append("CRITICAL STYLE TRANSFORMATION:\n" + STYLE_RULES)
        sections.append(self._metadata_block(options))
        sections.append(
            "This is a subject REPLACEMENT task with pose and style transformation, "
            "NOT a new image generation task."
        )
        return "\n\n".join(sections)

    @staticmethod
    def _aspect_ratio_block(aspect_ratio: Optional[str]) -> Optional[str]:
        orientation = orientation_for(aspect_ratio)
        if not orientation:
            return None
        if orientation == "SQUARE":
            detail = f"SQUARE FORMAT: output must be {aspect_ratio} (width = height)"
        else:
            detail = f"{orientation} ORIENTATION: output must be {aspect_ratio} (width:height)"
        return (
            f"MANDATORY OUTPUT FORMAT: {aspect_ratio}\n"
            f"- {detail}\n"
            "- The output MUST have the same aspect ratio as the REFERENCE IMAGE\n"
            "- DO NOT use the aspect ratio or dimensions of the SUBJECT PHOTO"
        )

    @staticmethod
    def _replacement_block(traits: Optional[PetCharacteristics]) -> str:
        lines = [
            "- Replace the original subject with the subject from the uploaded photo",
            "- The new subject must have the EXACT physical appearance from the "
            "uploaded photo (coloring, markings, facial features, fur patterns)",
        ]
        if traits:
            if traits.detected_breed:
                lines.append(f"- Breed: {traits.detected_breed}")
            if traits.detected_coat:
                lines.append(f"- Coat: {traits.detected_coat}")
            if traits.expression:
                lines.append(
                    f"- Maintain the natural {traits.expression} expression of this pet"
                )
            if traits.gaze or traits.pose:
                lines.append(
                    f"- Note: the pet usually has {traits.gaze or 'forward'} gaze and "
                    f"{traits.pose or 'natural'} posture, but MUST adopt the reference pose"
                )
        return "\n".join(lines)

    @staticmethod
    def _metadata_block(options: VariationPromptOptions) -> str:
        lines = [
            "Reference Portrait Metadata:",
            f"- Theme: {options.theme_name or 'original theme'}",
            f"- Style: {options.style_name or 'original style'}",
            f"- Format: {options.format_name or 'original format'}",
        ]
        if options.aspect_ratio:
            lines.append(f"- Aspect ratio: {options.aspect_ratio} (mandatory)")
        lines.append(f"- Target Breed: {options.breed_name or 'original breed'}")
        return "\n".join(lines)
