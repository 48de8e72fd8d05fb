"""
Scenario validation for the Diary Reels pipeline.

The scenario generator is a language model, so its output is only "likely
JSON". ``ScenarioValidator`` pulls the first JSON object out of the text,
checks it against the ``Scenario`` schema and the cross-shot quality rules,
and reports every violation as its own human-readable string so the
repair prompt can quote them back to the generator.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from schemas import Scenario

DEFAULT_NARRATION_DIRECTION = {
    "label": "calm",
    "intensity": 0.5,
    "delivery": {
        "speaking_rate": 1.0,
        "energy": 0.5,
        "pause_ms_before": 150,
        "pause_ms_after": 150,
    },
    "tts_instruction": "Speak naturally, calm, and clear.",
}

LABEL_VARIETY_ERROR = "narration_direction.label should vary across shots (use at least 2 distinct labels)."
INSTRUCTION_UNIQUE_ERROR = "Each shot must have its own distinct narration_direction.tts_instruction."


@dataclass
class ValidationResult:
    scenario: Optional[Scenario] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.scenario is not None and not self.errors


def _format_loc(loc) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "(root)"


class ScenarioValidator:
    """Validates AI-generated scenario text and collects every violation."""

    def __init__(self, raw_text: str, target_total_seconds: Optional[float] = None):
        self.raw_text = raw_text or ""
        self.target_total_seconds = target_total_seconds
        self.errors: List[str] = []

    @staticmethod
    def _strip_code_fence(text: str) -> str:
        t = text.strip()
        if t.startswith("```"):
            lines = t.split("\n")
            if len(lines) >= 3 and lines[-1].strip() == "```":
                return "\n".join(lines[1:-1]).strip()
        return t

    @staticmethod
    def _extract_first_object(text: str) -> str:
        """Return the first balanced {...} block, honouring JSON strings."""
        start = text.find("{")
        if start < 0:
            return text
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        return text[start:]

    def _parse(self) -> Optional[Dict[str, Any]]:
        if not self.raw_text.strip():
            self.errors.append("(root) generator returned an empty response.")
            return None
        candidate = self._extract_first_object(self._strip_code_fence(self.raw_text))
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as e:
            self.errors.append(f"(root) is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno}).")
            return None
        if not isinstance(payload, dict):
            self.errors.append("(root) must be an object.")
            return None
        return payload

    @staticmethod
    def _upgrade_v1(payload: Dict[str, Any]) -> Dict[str, Any]:
        """v1 shots carry no narration direction; give them the default one."""
        if payload.get("schema_version") != "reels_script_v1":
            return payload
        upgraded = dict(payload, schema_version="reels_script_v2")
        shots = payload.get("shots")
        if isinstance(shots, list):
            upgraded["shots"] = []
            for shot in shots:
                if isinstance(shot, dict) and "narration_direction" not in shot:
                    shot = dict(shot, narration_direction=json.loads(json.dumps(DEFAULT_NARRATION_DIRECTION)))
                upgraded["shots"].append(shot)
        return upgraded

    def _check_schema(self, payload: Dict[str, Any]) -> Optional[Scenario]:
        try:
            return Scenario.model_validate(payload)
        except ValidationError as exc:
            for err in exc.errors():
                self.errors.append(f"{_format_loc(err['loc'])} {err['msg']}")
            return None

    def _check_cross_fields(self, payload: Dict[str, Any]):
        shots = payload.get("shots")
        if not isinstance(shots, list):
            return
        labels = set()
        instructions = []
        shot_ids = []
        for shot in shots:
            if not isinstance(shot, dict):
                continue
            shot_id = str(shot.get("shot_id") or "").strip()
            if shot_id:
                shot_ids.append(shot_id)
            direction = shot.get("narration_direction")
            if not isinstance(direction, dict):
                continue
            label = str(direction.get("label") or "").strip().lower()
            if label:
                labels.add(label)
            instruction = str(direction.get("tts_instruction") or "").strip().casefold()
            if instruction:
                instructions.append(instruction)

        if len(labels) < 2:
            self.errors.append(LABEL_VARIETY_ERROR)
        if len(set(instructions)) < len(instructions):
            self.errors.append(INSTRUCTION_UNIQUE_ERROR)
        duplicated_ids = sorted({i for i in shot_ids if shot_ids.count(i) > 1})
        if duplicated_ids:
            self.errors.append(f"shot_id values must be unique (duplicated: {', '.join(duplicated_ids)}).")

        if self.target_total_seconds is not None:
            self._check_duration_sum(shots)

    def _check_duration_sum(self, shots: List[Any]):
        total = 0.0
        for i, shot in enumerate(shots):
            value = shot.get("duration_seconds") if isinstance(shot, dict) else None
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                self.errors.append(f"shots[{i}].duration_seconds is required when a total duration is targeted.")
                return
            total += value
        if total != self.target_total_seconds:
            self.errors.append(
                f"shots duration sum must be {self.target_total_seconds:g} seconds (received {total:g})."
            )

    def run(self) -> ValidationResult:
        payload = self._parse()
        if payload is None:
            return ValidationResult(errors=list(self.errors))

        payload = self._upgrade_v1(payload)
        scenario = self._check_schema(payload)
        self._check_cross_fields(payload)

        if self.errors:
            logging.warning(f"🧾 Scenario rejected with {len(self.errors)} violation(s): {' | '.join(self.errors)}")
            return ValidationResult(errors=list(self.errors))
        return ValidationResult(scenario=scenario)


def validate_scenario(raw_text: str, target_total_seconds: Optional[float] = None) -> ValidationResult:
    return ScenarioValidator(raw_text, target_total_seconds).run()
