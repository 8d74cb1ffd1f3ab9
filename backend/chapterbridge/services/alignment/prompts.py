"""Prompt templates for the LLM-assisted matchers (prompt version v1)."""

from __future__ import annotations

from typing import List

PROMPT_VERSION = "v1"

INCREMENTAL_SYSTEM_PROMPT = """You align ONE episode or chapter of a story to chapters of a novel, using only the event lines you are given.

Rules:
1. Reply with a single JSON object and nothing else.
2. Do not invent facts that are not in the event lines.
3. to_start and to_end must lie inside the provided window, with to_start <= to_end.
4. Keep ranges narrow: usually 1-6 chapters, at most about 10.
5. confidence is 0.0-1.0: above 0.8 for clear matches, 0.5-0.8 for partial ones, below 0.5 when unsure.
6. Set needs_wider_window to true when the match is weak and more chapters could help.
7. anchor_chapters: up to 3 novel chapters that match most strongly.
8. matched_phrases: up to 3 short phrases or events shared by both sides.
9. Never start more than {backtrack} chapters before the checkpoint's last_to_end.

Schema:
{{
  "mode": "incremental",
  "checkpoint": {{"last_from_number": number, "last_to_end": number}},
  "window": {{"start": number, "end": number}},
  "result": {{
    "from_number": number,
    "to_start": number,
    "to_end": number,
    "confidence": number,
    "needs_wider_window": boolean,
    "anchor_chapters": [number],
    "matched_phrases": [string]
  }}
}}"""

MATCHING_ALL_SYSTEM_PROMPT = """You align a batch of episodes or chapters of a story to chapters of a novel, using only the event lines you are given.

Rules:
1. Reply with a single JSON object and nothing else.
2. Do not invent facts that are not in the event lines.
3. Keep the mapping monotonic: each unit starts no earlier than the previous unit's start minus {backtrack}.
4. Keep ranges narrow: usually 1-6 chapters per unit, at most about 10. to_start <= to_end.
5. confidence is 0.0-1.0: above 0.8 for clear matches, 0.5-0.8 for partial ones, below 0.5 when unsure.
6. anchor_chapters: up to 3 novel chapters that match most strongly.
7. matched_phrases: up to 3 short phrases or events shared by both sides.
8. List units you are unsure about in notes.uncertain_from_numbers.

Schema:
{{
  "mode": "matching_all",
  "novel_range": {{"start": number, "end": number}},
  "from_range": {{"start": number, "end": number}},
  "mappings": [
    {{
      "from_number": number,
      "to_start": number,
      "to_end": number,
      "confidence": number,
      "anchor_chapters": [number],
      "matched_phrases": [string]
    }}
  ],
  "notes": {{"global_confidence": number, "uncertain_from_numbers": [number]}}
}}"""

FALLBACK_SYSTEM_PROMPT = """You align ONE episode or chapter of a story to chapters of a novel as a fallback, using only the event lines you are given.

Rules:
1. Reply with a single JSON object and nothing else.
2. Do not invent facts that are not in the event lines.
3. Be conservative: use confidence below 0.6 whenever you are unsure.
4. Keep ranges narrow: usually 1-6 chapters. to_start <= to_end.

Schema:
{
  "from_number": number,
  "to_start": number,
  "to_end": number,
  "confidence": number,
  "anchor_chapters": [number],
  "matched_phrases": [string]
}"""


def unit_label(media_type: str) -> str:
    return "episode" if media_type == "anime" else "chapter"


def incremental_system_prompt(backtrack: int) -> str:
    return INCREMENTAL_SYSTEM_PROMPT.format(backtrack=backtrack)


def matching_all_system_prompt(backtrack: int) -> str:
    return MATCHING_ALL_SYSTEM_PROMPT.format(backtrack=backtrack)


def build_incremental_prompt(
    from_line: str,
    target_lines: List[str],
    window_start: str,
    window_end: str,
    last_from_number: str,
    last_to_end: str,
    from_number: str,
    media_type: str,
    backtrack: int,
) -> str:
    label = unit_label(media_type)
    return (
        f"Align {label} {from_number} to the novel chapters in the window.\n\n"
        f"CHECKPOINT:\n"
        f"- last matched {label}: {last_from_number}\n"
        f"- last matched novel end: {last_to_end}\n\n"
        f"NOVEL_WINDOW ({window_start}-{window_end}):\n"
        + "\n".join(target_lines)
        + f"\n\nNEW_{label.upper()}:\n{from_line}\n\n"
        f"Return the JSON mapping. Do not start more than {backtrack} chapters before {last_to_end}."
    )


def build_matching_all_prompt(
    target_lines: List[str],
    from_lines: List[str],
    target_start: str,
    target_end: str,
    from_start: str,
    from_end: str,
    media_type: str,
) -> str:
    label = unit_label(media_type)
    return (
        f"Align {len(from_lines)} {label}s to {len(target_lines)} novel chapters.\n\n"
        f"NOVEL_CHAPTERS ({target_start}-{target_end}):\n"
        + "\n".join(target_lines)
        + f"\n\nFROM_SEGMENTS ({from_start}-{from_end}):\n"
        + "\n".join(from_lines)
        + f"\n\nReturn JSON with one mapping per {label}. Keep ranges monotonic and narrow."
    )


def build_fallback_prompt(from_line: str, target_lines: List[str], window_start: str, window_end: str) -> str:
    return (
        f"NOVEL_WINDOW ({window_start}-{window_end}):\n"
        + "\n".join(target_lines)
        + f"\n\nSEGMENT:\n{from_line}\n\n"
        "Return the JSON mapping for this single segment."
    )
